"""Chat orchestration for the analysis assistant.

Stages of a turn:
    intent_classifier: (step, action, confidence) for the latest message.
    continuity: new or continued conversation thread.
    confirmation: propose, confirm, execute gate and dispatcher.
    checklist: restatement of the user's requests.
    answer: open-ended answer from gathered context.
    composer: final reply text.

The turn itself is driven by ``analysis_assistant.services.chat_turn``.
"""
