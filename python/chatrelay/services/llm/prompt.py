"""Provider-agnostic prompt rendering for chat requests.

Prompt structure:
- System turn always first (fixed instructions about attachment blocks)
- History turns, oldest first (stored system turns are skipped)
- Current user turn last (text, or text + image parts)
"""

from chatrelay.services.llm.types import Turn

ATTACHMENT_BLOCK_HEADER = "=== Attachment: {name} ==="

FILE_CONTEXT_SYSTEM_PROMPT = """You are a helpful assistant.
The user may attach files. Their extracted text is included in the user message in blocks that start with a line of the form "=== Attachment: <file name> ===".
Treat each block as the content of that file and answer using it when relevant.
A block may end with a truncation notice; in that case only part of the file is shown and the user can ask you to continue reading.
If a block says the file could not be read, tell the user instead of guessing its content."""


def render_prompt(
    user_turn: Turn,
    history: list[Turn],
    system_prompt: str = FILE_CONTEXT_SYSTEM_PROMPT,
) -> list[Turn]:
    """Build the ordered turn list for a provider request.

    Args:
        user_turn: The new user turn.
        history: Previous turns, oldest first.
        system_prompt: System instructions.

    Returns:
        List of Turn objects, system turn first.
    """
    turns: list[Turn] = [Turn(role="system", content=system_prompt)]
    turns.extend(turn for turn in history if turn.role != "system")
    turns.append(user_turn)
    return turns
