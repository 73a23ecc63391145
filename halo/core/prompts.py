"""
Classification prompt for the danger classifier.

Small local models follow worked examples far better than instructions, so
the prompt leans on few-shot pairs: four dangerous patterns and three safe
ones, each with the exact JSON the model should echo back.
"""

from typing import List, Tuple

PREAMBLE = (
    "You are a safety guardian listening to conversations for an elderly or "
    "vulnerable person. Decide whether the speech is a scam, a threat, or a "
    "dangerous manipulation attempt.\n"
    "Reply ONLY with JSON in this exact shape: "
    '{"danger": true/false, "confidence": 0.0-1.0, "reasoning": "one sentence"}\n'
)

# (input, expected verdict JSON)
FEW_SHOT_EXAMPLES: List[Tuple[str, str]] = [
    (
        "This is your bank's fraud department. Your account is frozen, read me the code we just texted you.",
        '{"danger": true, "confidence": 0.95, "reasoning": "Bank impersonation asking for a one-time passcode."}',
    ),
    (
        "Congratulations, you won the lottery! Just pay the 500 dollar processing fee to claim your prize.",
        '{"danger": true, "confidence": 0.93, "reasoning": "Advance-fee lottery fraud demanding payment up front."}',
    ),
    (
        "We need a photo of your passport and your social security number to verify your identity today.",
        '{"danger": true, "confidence": 0.9, "reasoning": "Identity-document phishing for passport and SSN."}',
    ),
    (
        "Grandpa it's me, I'm in jail, please wire money right now and don't tell mom and dad.",
        '{"danger": true, "confidence": 0.94, "reasoning": "Emergency urgency combined with a demand for secrecy."}',
    ),
    (
        "Hi, how are you doing today? It's been a while.",
        '{"danger": false, "confidence": 0.05, "reasoning": "Friendly greeting."}',
    ),
    (
        "The plumber is coming Tuesday at ten, can you leave the side door open?",
        '{"danger": false, "confidence": 0.05, "reasoning": "Ordinary household logistics."}',
    ),
    (
        "The weather has been lovely, the roses in the garden finally bloomed.",
        '{"danger": false, "confidence": 0.02, "reasoning": "Small talk."}',
    ),
]


def sanitize_input(text: str) -> str:
    """Neutralize double quotes so the input cannot break prompt quoting."""
    return (text or "").replace('"', "'")


def build_prompt(text: str) -> str:
    """Assemble preamble, worked examples, the input and the Output: cue."""
    lines = [PREAMBLE, "Examples:"]
    for example_input, example_output in FEW_SHOT_EXAMPLES:
        lines.append(f'Input: "{example_input}"')
        lines.append(f"Output: {example_output}")
        lines.append("")
    lines.append(f'Input: "{sanitize_input(text)}"')
    lines.append("Output:")
    return "\n".join(lines)
