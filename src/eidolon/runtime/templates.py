"""Prompt templates. Placeholders are {{key}} and filled by compose_context."""

STRING_ARRAY_FOOTER = """Respond with a JSON array containing the values in a JSON block formatted for markdown with this structure:
```json
[
  'value',
  'value'
]
```

Your response must include the JSON block."""

EVALUATION_TEMPLATE = """TASK: Based on the conversation and conditions, determine which evaluation functions are appropriate to call.
Examples:
{{evaluatorExamples}}

INSTRUCTIONS: You are helping me to decide which appropriate functions to call based on the conversation between {{senderName}} and {{agentName}}.

{{recentMessages}}

Evaluator Functions:
{{evaluators}}

TASK: Based on the most recent conversation, determine which evaluators functions are appropriate to call.
Include the name of evaluators that are relevant and should be called in the array
Available evaluator names to include are {{evaluatorNames}}
""" + STRING_ARRAY_FOOTER

GOALS_HEADER = "# Goals\n{{agentName}} should prioritize accomplishing the objectives that are in progress."

APOLOGY_TEXT = "I apologize, but I encountered an error processing your message."
