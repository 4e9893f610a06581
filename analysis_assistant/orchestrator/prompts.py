"""Prompt text and fixed user-facing phrases for the orchestrator stages.

Every stage that calls the completion service builds its system prompt
here, so wording changes stay in one place. The fixed phrases
(checklist preamble, confirmation question, acknowledgements) are also
matched by tests and by the client, so treat them as part of the API.
"""

from analysis_assistant.orchestrator.models import (
    RequestAction,
    TargetStep,
    TurnContext,
)

CHECKLIST_PREAMBLE = "Here's a summary of what you're asking for:"
CONFIRMATION_QUESTION = "Would you like me to proceed with these changes?"
EMPTY_CHECKLIST = f"{CHECKLIST_PREAMBLE}\n\n- No specific changes were requested."

DEPENDENCY_NOTE = (
    "Deployment instructions have not been generated for this submission yet, "
    "so the deployment analysis has to run before the deployment script can be "
    "implemented. I've switched the request to the deployment analysis step."
)

STEP_LABELS: dict[str, str] = {
    TargetStep.analyze_project.value: "project summary",
    TargetStep.analyze_actors.value: "actor analysis",
    TargetStep.analyze_deployment.value: "deployment instructions",
    TargetStep.implement_deployment_script.value: "deployment script",
    TargetStep.verify_deployment_script.value: "deployment verification",
}

SECTION_INSTRUCTIONS: dict[str, str] = {
    "project_summary": (
        "You are now focusing on the project summary. Help the user understand "
        "the overall project, its purpose, and architecture."
    ),
    "actor_summary": (
        "You are now focusing on actor analysis. Help the user understand the "
        "different actors in the smart contract ecosystem and their interactions."
    ),
    "deployment_instructions": (
        "You are now focusing on deployment instructions. Help the user understand "
        "how to deploy the contracts and any potential issues they might face."
    ),
    "implementation": (
        "You are now focusing on implementation details. Help the user understand "
        "the code implementation and suggest best practices."
    ),
    "validation_rules": (
        "You are now focusing on validation rules. Help the user understand how to "
        "validate their smart contracts and what security measures to take."
    ),
}

_ACKNOWLEDGEMENTS: dict[tuple[str, str], str] = {
    (TargetStep.analyze_project.value, RequestAction.refine.value):
        "I've started refining the project summary with your feedback.",
    (TargetStep.analyze_project.value, RequestAction.update.value):
        "I've started updating the project summary.",
    (TargetStep.analyze_project.value, RequestAction.run.value):
        "I've restarted the project analysis.",
    (TargetStep.analyze_actors.value, RequestAction.refine.value):
        "I've started refining the actor analysis with your feedback.",
    (TargetStep.analyze_actors.value, RequestAction.update.value):
        "I've started updating the actor analysis.",
    (TargetStep.analyze_actors.value, RequestAction.run.value):
        "I've restarted the actor analysis.",
    (TargetStep.analyze_deployment.value, RequestAction.refine.value):
        "I've started refining the deployment instructions with your feedback.",
    (TargetStep.analyze_deployment.value, RequestAction.update.value):
        "I've started updating the deployment instructions.",
    (TargetStep.analyze_deployment.value, RequestAction.run.value):
        "I've restarted the deployment analysis.",
    (TargetStep.implement_deployment_script.value, RequestAction.refine.value):
        "I've started revising the deployment script with your changes.",
    (TargetStep.implement_deployment_script.value, RequestAction.update.value):
        "I've started updating the deployment script.",
    (TargetStep.implement_deployment_script.value, RequestAction.run.value):
        "I've started regenerating the deployment script.",
    (TargetStep.verify_deployment_script.value, RequestAction.run.value):
        "I've started a new verification run of the deployment script.",
}


def acknowledgement(step: str, action: str) -> str:
    """Fixed sentence confirming a dispatched action."""
    ack = _ACKNOWLEDGEMENTS.get((step, action))
    if ack:
        return ack
    label = STEP_LABELS.get(step, "analysis")
    return f"I've sent your request to update the {label}. The results will refresh once it finishes."


def _context_lines(context: TurnContext) -> str:
    return (
        f"User's current project: {context.project_name or 'Unknown'}\n"
        f"Current section: {context.section or 'Main Analysis'}\n"
        f"Current analysis step: {context.current_step or 'Unknown'}"
    )


def build_classifier_prompt(context: TurnContext) -> str:
    """System prompt for request classification. Demands one JSON object."""
    steps = ", ".join(s.value for s in TargetStep)
    actions = ", ".join(a.value for a in RequestAction)
    return f"""You classify requests made to a smart contract analysis assistant.

{_context_lines(context)}

WORKFLOW STEPS:
- analyze_project: project summary, purpose and architecture
- analyze_actors: actors of the contract system and their interactions
- analyze_deployment: deployment instructions
- implement_deployment_script: the generated deployment script
- verify_deployment_script: running and verifying the deployment script

ACTIONS:
- refine: improve an existing result using the user's feedback
- update: change specific parts of a result
- run: execute or re-execute a step
- clarify: the user asks a question; nothing should change
- needs_followup: the user wants help deciding what to ask for

Respond with ONLY a JSON object, no prose, in exactly this shape:
{{"step": one of [{steps}], "action": one of [{actions}, needs_followup],
 "confidence": number between 0 and 1, "explanation": short string,
 "is_actionable": true if the request can be carried out as stated}}

Use "unknown" when the message does not clearly target a step or action.
Questions about results are "clarify", never "refine"."""


def build_continuity_prompt(context: TurnContext) -> str:
    """System prompt for the new-versus-continued conversation decision."""
    return f"""You decide whether the latest chat message starts a new topic.

{_context_lines(context)}

You receive the earlier messages and then the latest message. Answer
"new_conversation" only when the latest message is unrelated to what was
being discussed. Follow-ups, corrections and yes/no replies continue the
conversation.

Respond with ONLY a JSON object:
{{"type": "new_conversation" or "continue_conversation",
 "confidence": number between 0 and 1, "explanation": short string}}"""


def build_checklist_prompt(context: TurnContext, step: str) -> str:
    """System prompt for turning the user's requests into action items."""
    label = STEP_LABELS.get(step, step)
    return f"""You turn a user's chat requests into a checklist of changes.

{_context_lines(context)}
Target: {label}

Read every user message and list each concrete change the user asked for,
merging duplicates and dropping questions and small talk. Later messages
override earlier ones when they conflict.

Respond in exactly this format and nothing else:
{CHECKLIST_PREAMBLE}

- first change
- second change"""


def build_answer_prompt(
    context: TurnContext,
    section_text: str = "",
    transcript: str = "",
    step_status: str | None = None,
    dependency_note: str | None = None,
) -> str:
    """System prompt for the open-ended answer."""
    prompt = (
        "You are a blockchain smart contract analysis assistant. You help users "
        "understand and improve the analysis of their project.\n\n"
        "You must only answer questions related to the user's current project. "
        "Do not answer questions unrelated to blockchain, smart contracts, or the "
        "user's current project.\n\n"
        f"{_context_lines(context)}"
    )
    if step_status:
        prompt += f"\nStep status: {step_status}"

    instructions = SECTION_INSTRUCTIONS.get(context.section or "")
    if instructions:
        prompt += f"\n\n{instructions}"
    if section_text:
        prompt += f"\n\nCurrent section data:\n{section_text}"
    if transcript:
        prompt += f"\n\nRecent workflow logs (oldest first):\n{transcript}"
    if dependency_note:
        prompt += f"\n\nNote for the user: {dependency_note}"
    return prompt
