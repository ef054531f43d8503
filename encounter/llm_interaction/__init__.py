# encounter/llm_interaction/__init__.py

"""
1) Adapter ---------- How to talk to the model
2) Responses -------- What the model is allowed to send back
3) Prompt Builders -- How to assemble context
4) Prompt Texts ----- What instructions to give
5) Step Engine ------ How one LLM operation behaves
6) Step Registry ---- Which operations exist


adapter.py
"How we talk to LLMs"
One request to Ollama per call, no retries. Every failure comes out as an
LLMError subclass (EmptyResponse, TransportFailure) so the encounter
controller can show it and offer a retry.


responses.py
"What the model may send back"
Pydantic models for the init and action JSON. Anything the model may change
is Optional: None means it did not say, so the local value stays.


prompt_builders.py
"How we assemble context for LLMs"
PromptState + HostContext hold everything a prompt needs; the three builders
(init, action, summary) are pure functions of them.


prompt_texts.py
"What instructions we give to LLMs"
Default templates with profile placeholders ({ENCOUNTER_TYPE}, ...).


step.py
"How one LLM operation behaves"
Flow:
-call the generator
-cut the JSON out of the reply (fences, <think> blocks, prose)
-validate
-return the parsed object, or raise MalformedJSON / MissingRequiredField


registry.py
"Which steps exist"
{
  "init": LLMStep(...),
  "action": LLMStep(...),
  "summary": LLMStep(...),
}
"""
