"""Instruction texts sent to producers and validators."""

from __future__ import annotations

OUTPUT_SCHEMA = "{title, answer, compressed_context, status}"

REFORMAT_INSTRUCTION = (
    "You are a formatter. Reformat the previous output strictly into a JSON object with exactly these "
    f"fields: {OUTPUT_SCHEMA}. Values: status must be one of ['continue', 'final']. Do not add other "
    "top-level keys. Do not change content, only structure."
)

FINALIZE_INSTRUCTION = (
    "Produce the final technical specification from the collected information. Respond strictly in JSON "
    f"{OUTPUT_SCHEMA}. Put the complete, structured specification into 'answer'. Set status='final'."
)

CHECKER_INSTRUCTION = (
    "You check the status chosen by another model that is assembling a technical specification. You "
    "receive two fields of its reply: 'answer' and 'status'. Status 'continue' must contain clarifying "
    "questions, status 'final' must contain the finished specification. Check whether the chosen status "
    'matches the content. Return strictly JSON {"status": "ok|fail", "msg": "if fail, briefly what to '
    'fix, otherwise empty"}. Plain text JSON only, no formatting.'
)

SUMMARY_INSTRUCTION = "Summarize the conversation. Respond strictly in JSON {title, answer, compressed_context}."

STOP_AND_SUMMARIZE = (
    "Tool call budget for this turn is used up. Do not call any tool. Summarize what the tool results "
    "show and answer the user directly."
)


def elicitation_instruction(topic: str, budget: int) -> str:
    return (
        "Requirements elicitation mode (technical specification). Your job is to iteratively clarify and "
        f"assemble a complete specification for the topic: '{topic}'. Ask up to 5 highly targeted questions "
        "per turn until you are confident the specification is complete. Focus on scope and goals, user "
        "roles, environment, constraints, functional and non-functional requirements, data and "
        "integrations, dependencies, acceptance criteria, risks and deliverables. Prefer concrete options "
        "and short free-form fields, personalized to the previous answers. "
        f"Always respond strictly in JSON {OUTPUT_SCHEMA}. Set status='continue' while clarifying. When "
        "the specification is fully ready, set status='final'. If your context window is getting full, "
        "include 'compressed_context' with a compact summary of essential facts and decisions so you can "
        f"continue without previous messages. You have at most {budget} messages to clarify before "
        "finalization."
    )


def elicitation_seed(topic: str) -> str:
    return f"Specification topic: {topic}"


def accelerate_hint(remaining: int) -> str:
    return (
        f"Very few clarification turns remain ({remaining}). Ask fewer questions and close the "
        "specification as soon as possible. If possible, finalize in this answer (status='final')."
    )


def correction_instruction(feedback: str) -> str:
    return f"Fix the previous answer according to these remarks: {feedback}. Keep the strict JSON schema {OUTPUT_SCHEMA}."


def instruction_prompt(specification: str) -> str:
    return (
        "You receive a final technical specification. Based on it, write a detailed step-by-step "
        "instruction for the user. For a recipe give the full recipe with stages and ingredients; for "
        "software give the recommended stack, work stages, priorities and dependencies; and so on. Be "
        "concrete: number the steps, one step per line. Do not discuss how the specification was "
        "assembled. Reply in plain human-readable text, not JSON.\n\nFinal specification:\n"
        f"{specification}"
    )


def build_checker_input(answer: str, status: str) -> str:
    return f"answer: {answer.strip()}\nstatus: {status.strip()}"


VALIDATION_SCHEMA = (
    '{"is_valid": true|false, "message": "explanation", "suggested_action": "what to change if invalid", '
    '"correction_request": "concrete instructions for the next attempt if invalid", '
    '"specific_issues": "problems found, one string separated by semicolons"}'
)


def _with_correction(prompt: str, feedback: str) -> str:
    if not feedback:
        return prompt
    return (
        f"{prompt}\n\nCORRECTION NEEDED: the previous attempt failed validation with this feedback: "
        f'"{feedback}". Address the specific issues mentioned.'
    )


def search_query_prompt(request: str, feedback: str = "") -> str:
    prompt = (
        "You convert user requests into a search query for a document source. Supported operators: "
        "in:<folder>, is:unread, is:important, is:starred, newer_than:Nd, older_than:Nd, OR, parentheses. "
        "Parse time periods exactly: 'last 3 days' is newer_than:3d, 'today' is newer_than:1d, 'week' is "
        f'newer_than:7d. User request: "{request}". Respond with raw JSON only: '
        '{"query": "search operators", "explanation": "what the query searches for"}'
    )
    return _with_correction(prompt, feedback)


def search_query_validation_prompt(request: str, query: str) -> str:
    return (
        "You validate whether a generated search query represents the user's request. Check time period "
        "accuracy first (numbers of days must match exactly), then folders and status filters, then syntax. "
        f'User request: "{request}". Generated query: "{query}". Respond with raw JSON only: {VALIDATION_SCHEMA}'
    )


def collect_data_prompt(request: str, feedback: str = "") -> str:
    prompt = (
        "You are a data collection agent. Analyze the documents found for the user's request and return "
        "the findings in a structured form: item count and source, grouping by importance and urgency, key "
        "themes, actionable items. If nothing was found, explain why and whether that is expected. "
        f'User request: "{request}".'
    )
    return _with_correction(prompt, feedback)


def collect_data_validation_prompt(request: str) -> str:
    return (
        "You validate whether collected data adequately addresses the user's request. Criteria: the data "
        "contains relevant items, there is enough information for a meaningful summary, important items are "
        f'identified. User request: "{request}". Respond with raw JSON only: {VALIDATION_SCHEMA}'
    )


def summary_prompt(request: str, feedback: str = "") -> str:
    prompt = (
        "You create a concise, informative summary of the collected data for the user's request, in the "
        "user's language. Highlight important items, group related ones, add follow-up suggestions. "
        f'User request: "{request}". Respond with raw JSON only: '
        '{"title": "summary title", "content": "markdown summary"}. Both values must be strings.'
    )
    return _with_correction(prompt, feedback)


def summary_validation_prompt() -> str:
    return (
        "You validate a generated summary. Criteria: descriptive title, well-structured informative content, "
        "important information highlighted, correct markdown, actionable insights, the user's language is "
        f"used. Respond with raw JSON only: {VALIDATION_SCHEMA}"
    )
