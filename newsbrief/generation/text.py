"""Text shaping for scripts: cleaning, length trimming, closing line, TTS chunking."""

import re

ELLIPSIS_RE = re.compile(r"(\.{3,}|…|⋯|‥)")
SENTENCE_RE = re.compile(r"[^。！？.!?]+[。！？.!?]*")
PARAGRAPH_RE = re.compile(r"\n+")
CLOSING_LINE_RE = re.compile(r"^以上[^\n]*[。.]?\s*$")

SCRIPT_CLOSING = "以上がこの時間のニュースでした。"


def normalize_whitespace(value) -> str:
    return re.sub(r"\s+", " ", str(value or "")).strip()


def has_ellipsis(text) -> bool:
    return bool(ELLIPSIS_RE.search(str(text or "")))


def clean_title(title) -> str:
    return ELLIPSIS_RE.sub("", normalize_whitespace(title)).strip()


def clean_description(description) -> str:
    """Descriptions that were cut off with an ellipsis are dropped entirely."""
    normalized = normalize_whitespace(description)
    if not normalized or has_ellipsis(normalized):
        return ""
    cleaned = ELLIPSIS_RE.sub("", normalized).strip()
    if not cleaned:
        return ""
    if not re.search(r"[。．.!?]$", cleaned):
        return f"{cleaned}。"
    return cleaned


def sanitize_script(text) -> str:
    cleaned = ELLIPSIS_RE.sub("。", str(text or ""))
    cleaned = re.sub(r"。{2,}", "。", cleaned)
    return cleaned.strip()


def strip_markdown(text: str) -> str:
    text = re.sub(r"\*\*([^*]*)\*\*", r"\1", text)
    text = text.replace("**", "")
    text = re.sub(r"\*([^*]*)\*", r"\1", text)
    return text.replace("*", "")


def split_sentences(text: str) -> list[str]:
    sentences = []
    for paragraph in PARAGRAPH_RE.split(str(text)):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        for part in SENTENCE_RE.findall(paragraph) or [paragraph]:
            part = part.strip()
            if part:
                sentences.append(part)
    return sentences


def trim_script_to_target(script: str, target_chars: int, min_ratio: float = 1.02, max_ratio: float = 1.05) -> str:
    """Cut a long script down to roughly ``target_chars`` on sentence boundaries.

    Scripts no longer than ``floor(target * max_ratio)`` are returned as is.
    Otherwise sentences are accumulated greedily (joined by newlines) and the
    first accumulation that reaches ``floor(target * min_ratio)`` without passing
    the maximum wins. When the next sentence would pass the maximum while the
    accumulation is still short, that sentence is taken anyway so the result is
    never left too short. Single pass, no search for a better grouping.
    """
    if not script or not target_chars:
        return script

    max_len = int(target_chars * max_ratio)
    min_len = int(target_chars * min_ratio)
    if len(script) <= max_len:
        return script

    best = ""
    current = ""
    for sentence in split_sentences(script):
        candidate = f"{current}\n{sentence}" if current else sentence
        if len(candidate) <= max_len:
            current = best = candidate
            if len(current) >= min_len:
                break
            continue
        if not current or len(current) < min_len:
            best = candidate
        break

    return best or current or script


def close_script(script: str) -> str:
    """Drop trailing "以上..." lines and append the fixed closing line once."""
    lines = (script or "").rstrip().split("\n")
    while lines and CLOSING_LINE_RE.match(lines[-1].strip()):
        lines.pop()
    body = "\n".join(lines).rstrip()
    return f"{body}\n\n{SCRIPT_CLOSING}"


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def split_text_by_byte_length(text: str, max_bytes: int) -> list[str]:
    """Split text into chunks of at most ``max_bytes`` UTF-8 bytes, in order.

    Sentences are packed into chunks joined by newlines; paragraph breaks are
    therefore preserved only as sentence separators. A sentence larger than
    ``max_bytes`` on its own is packed character by character.
    """
    cleaned = str(text or "").strip()
    if not cleaned:
        return []
    if _byte_length(cleaned) <= max_bytes:
        return [cleaned]

    chunks: list[str] = []
    current = ""

    def push_current():
        nonlocal current
        trimmed = current.strip()
        if trimmed:
            chunks.append(trimmed)
        current = ""

    for sentence in split_sentences(cleaned):
        candidate = f"{current}\n{sentence}" if current else sentence
        if _byte_length(candidate) <= max_bytes:
            current = candidate
            continue

        push_current()
        if _byte_length(sentence) <= max_bytes:
            current = sentence
            continue

        buf = ""
        for ch in sentence:
            if _byte_length(buf + ch) > max_bytes:
                if buf:
                    chunks.append(buf)
                buf = ch
            else:
                buf += ch
        if buf:
            chunks.append(buf)

    push_current()
    return chunks
