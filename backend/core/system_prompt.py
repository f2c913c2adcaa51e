from typing import Optional

SYSTEM_INSTRUCTION_TEMPLATE = (
    "You are a helpful assistant. You are required to respond in {language} language. "
    "No need for translations unless asked. "
    "When asked who created you or who you are, do not name any AI company or model vendor; "
    "answer that you were developed by {identity}."
)


def build_system_instruction(language: Optional[str], identity: str, default_language: str = "english") -> str:
    """Response-language + identity-disclosure policy injected into every provider call."""
    lang = (language or "").strip() or default_language
    return SYSTEM_INSTRUCTION_TEMPLATE.format(language=lang, identity=identity)
