"""Structured usage logging for generation calls.

Emits one structured log line per generation call with the fields needed
for cost and latency analysis. Machine-parseable via the ``extra`` dict;
standard JSON log formatters (e.g., python-json-logger) pick these up
automatically.

Logger name: ``aitrumps.ai.usage``

Prompt text is never logged, only its length: it's user input and it can
be large.
"""

import logging

logger = logging.getLogger("aitrumps.ai.usage")


def log_generation(
    *,
    model_kind: str,
    model_id: str,
    prompt_length: int,
    duration_ms: float,
    outcome: str,
    player_code: str | None,
    card_id: str | None = None,
    attempts: int = 1,
) -> None:
    """Emits a structured log for a finished generation call.

    Successful calls log at INFO, everything else at WARNING.

    Args:
        model_kind: "text" or "image".
        model_id: The provider model used.
        prompt_length: Length of the prompt in characters.
        duration_ms: Wall-clock duration including retries.
        outcome: "ok", or an error code such as "PARSE_ERROR".
        player_code: Caller identity, if authenticated.
        card_id: Card the image belongs to, if any.
        attempts: Provider attempts made.
    """
    level = logging.INFO if outcome == "ok" else logging.WARNING
    logger.log(
        level,
        "Generation: %s %s outcome=%s prompt_len=%d latency=%.0fms attempts=%d player=%s",
        model_kind,
        model_id,
        outcome,
        prompt_length,
        duration_ms,
        attempts,
        player_code or "anonymous",
        extra={
            "model_kind": model_kind,
            "model_id": model_id,
            "prompt_length": prompt_length,
            "duration_ms": duration_ms,
            "outcome": outcome,
            "player_code": player_code,
            "card_id": card_id,
            "attempts": attempts,
        },
    )
