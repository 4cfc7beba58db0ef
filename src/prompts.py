"""Prompts and canned replies for the conversational action agent."""

from datetime import UTC, datetime

from langchain_core.prompts import ChatPromptTemplate

RAG_SYSTEM_PROMPT = """You are a helpful assistant with access to a knowledge base.
When responding to questions, use only the provided context and do not hallucinate information.
If you don't know the answer based on the provided context, say so.

You can also perform actions for the user: booking appointments, taking notes,
setting reminders and searching the knowledge base. When the context contains an
"Action summary", tell the user plainly which actions succeeded and which failed.

Today is {current_date} ({current_day_of_week}). The current time is {current_time} UTC.
Keep responses clear, concise and accurate."""

EXTRACTION_SYSTEM_PROMPT = """You detect whether the user's message asks you to perform one of the
available actions. If it does, call exactly one matching tool with the arguments
stated in the message. Never invent values the user did not give you. If the
message is a question or small talk, do not call any tool.

Today is {current_date} ({current_day_of_week}). Resolve relative dates such as
"tomorrow" or "next Monday" to YYYY-MM-DD and times to 24-hour HH:MM."""

# ── Canned replies ──────────────────────────────────────────────────
NO_HISTORY_REPLY = "I don't see any previous messages. How can I help you today?"
GENERATION_FALLBACK_REPLY = (
    "I apologize, but I'm having trouble generating a response right now. "
    "Please try again in a moment."
)
PIPELINE_FALLBACK_REPLY = (
    "I'm sorry, something went wrong while processing your message. "
    "Please try again."
)
NO_CONTEXT_PLACEHOLDER = "No relevant context found."
SUMMARY_PROMPT = (
    "Summarize the following conversation in a few sentences, keeping any "
    "names, dates, decisions and requested actions:\n\n{history}"
)


def _now_fields() -> dict[str, str]:
    now = datetime.now(UTC)
    return {
        "current_date": now.strftime("%d %B %Y"),
        "current_day_of_week": now.strftime("%A"),
        "current_time": now.strftime("%H:%M"),
    }


def get_system_prompt(template: str = RAG_SYSTEM_PROMPT) -> str:
    """Build the response system prompt with the current date injected."""
    return template.format(**_now_fields())


def get_extraction_prompt() -> str:
    """Build the tool-selection system prompt with the current date injected."""
    now = _now_fields()
    return EXTRACTION_SYSTEM_PROMPT.format(
        current_date=now["current_date"],
        current_day_of_week=now["current_day_of_week"],
    )


def create_rag_prompt() -> ChatPromptTemplate:
    """Prompt template fed with ``system_prompt``, ``chat_history``, ``context`` and ``input``."""
    return ChatPromptTemplate.from_messages(
        [
            (
                "system",
                "{system_prompt}\n\n"
                "Conversation so far:\n{chat_history}\n\n"
                "Context information:\n{context}",
            ),
            ("human", "{input}"),
        ]
    )
