"""
Artifact Store - extracts demarcated code artifacts from assistant text.

Block format:
    <!--ARTIFACT:{"title":"main.ts","language":"typescript"}-->
    ```typescript
    // code
    ```
    <!--/ARTIFACT-->

Extraction is pure and safe to call on every streaming delta: a block whose
closing delimiter has not arrived yet is ignored until the message is final.
"""

import json
import re
from typing import Iterable, List, Optional, Tuple

from codegate.config import get_settings
from codegate.engines.unlock.errors import ExtractionError
from codegate.engines.unlock.models import Artifact, ArtifactType, compute_content_hash
from codegate.logging_config import get_logger

logger = get_logger(__name__)

ARTIFACT_BLOCK_RE = re.compile(
    r"<!--ARTIFACT:\s*([\s\S]*?)\s*-->\s*```([\w+#.-]+)?\r?\n([\s\S]*?)```\s*<!--/ARTIFACT-->"
)
ARTIFACT_OPEN_RE = re.compile(r"<!--ARTIFACT:\s*([\s\S]*?)\s*-->")
FENCE_OPEN_RE = re.compile(r"\s*```([\w+#.-]+)?\r?\n")
ARTIFACT_CLOSE = "<!--/ARTIFACT-->"

_FINGERPRINT_LEN = 12


def _clean_body(body: str) -> str:
    """Trim surrounding blank lines and trailing whitespace, keep first-line indentation."""
    return body.rstrip().lstrip("\r\n")


def identity_key(title: Optional[str], language: Optional[str], ordinal: int, meta_id: Optional[str] = None) -> str:
    """Logical slot key: title+language when both known, else model id, else ordinal."""
    if title and language:
        return f"{title}::{language}"
    if meta_id:
        return f"id:{meta_id}"
    return f"#{ordinal}"


class ArtifactStore:
    """
    Parses artifact blocks and assigns identity and versions.

    The store itself holds no artifacts; the SessionManager owns the
    extracted records and asks the store for the next version of a slot.
    """

    def __init__(self, truncation_sentinels: Optional[Iterable[str]] = None):
        if truncation_sentinels is None:
            truncation_sentinels = get_settings().truncation_sentinels
        self.truncation_sentinels = tuple(s for s in truncation_sentinels if s)

    def extract(self, text: str, *, is_final: bool = False) -> List[Artifact]:
        """
        Extract all complete artifact blocks from text.

        With is_final=True, a block that was opened but never closed is also
        reported, flagged truncated when its body looks cut off.
        """
        artifacts: List[Artifact] = []
        consumed: List[Tuple[int, int]] = []
        ordinal = 0

        for match in ARTIFACT_BLOCK_RE.finditer(text):
            consumed.append(match.span())
            meta_json, fence_language, body = match.group(1), match.group(2), match.group(3)
            try:
                meta = self._parse_meta(meta_json)
            except ExtractionError as exc:
                logger.warning(
                    "Skipping malformed artifact block",
                    extra={"offset": match.start(), "error": str(exc)},
                )
                continue
            artifacts.append(self._build(meta, fence_language, _clean_body(body), ordinal, truncated=False))
            ordinal += 1

        if is_final:
            tail = self._extract_unclosed(text, consumed, ordinal)
            if tail is not None:
                artifacts.append(tail)

        return artifacts

    def next_version(self, current: Artifact, incoming: Artifact) -> Artifact:
        """New immutable record for an existing slot, keeping its stable id."""
        return incoming.model_copy(update={
            "id": current.id,
            "key": current.key,
            "version": current.version + 1,
        })

    def strip_artifacts(self, text: str) -> str:
        """Replace each complete artifact block with a one-line pointer to the code panel."""

        def _placeholder(match: re.Match) -> str:
            try:
                meta = self._parse_meta(match.group(1))
            except ExtractionError:
                return match.group(0)
            title = meta.get("title") or "Code"
            return f"\n> **{title}** is shown in the code panel\n"

        return ARTIFACT_BLOCK_RE.sub(_placeholder, text)

    # ── internals ──────────────────────────────────────────────────────

    def _parse_meta(self, meta_json: str) -> dict:
        cleaned = meta_json.strip().replace("\n", "")
        try:
            meta = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise ExtractionError(f"Invalid artifact metadata: {exc.msg}") from exc
        if not isinstance(meta, dict):
            raise ExtractionError("Artifact metadata must be a JSON object")
        return meta

    def _build(
        self,
        meta: dict,
        fence_language: Optional[str],
        content: str,
        ordinal: int,
        *,
        truncated: bool,
    ) -> Artifact:
        title = str(meta.get("title") or "").strip()
        language = str(meta.get("language") or fence_language or "").strip()
        meta_id = meta.get("id")
        content_hash = compute_content_hash(content)
        try:
            artifact_type = ArtifactType(meta.get("type") or "code")
        except ValueError:
            artifact_type = ArtifactType.CODE

        return Artifact(
            id=f"{content_hash[:_FINGERPRINT_LEN]}-{ordinal}",
            key=identity_key(title, language, ordinal, str(meta_id) if meta_id else None),
            title=title or f"{language or 'code'} #{ordinal + 1}",
            language=language or "text",
            content=content,
            content_hash=content_hash,
            truncated=truncated,
            ordinal=ordinal,
            artifact_type=artifact_type,
        )

    def _extract_unclosed(
        self,
        text: str,
        consumed: List[Tuple[int, int]],
        ordinal: int,
    ) -> Optional[Artifact]:
        """Recover the last opened-but-unclosed block of a finished message."""
        start = consumed[-1][1] if consumed else 0
        open_match = None
        for candidate in ARTIFACT_OPEN_RE.finditer(text, start):
            open_match = candidate
        if open_match is None:
            return None

        fence = FENCE_OPEN_RE.match(text, open_match.end())
        if fence is None:
            logger.debug("Unclosed artifact marker without a code fence ignored")
            return None

        try:
            meta = self._parse_meta(open_match.group(1))
        except ExtractionError as exc:
            logger.warning("Skipping malformed unclosed artifact block", extra={"error": str(exc)})
            return None

        rest = text[fence.end():]
        fence_close = rest.find("```")
        if fence_close >= 0:
            body = rest[:fence_close]
            truncated = self._has_sentinel(rest[fence_close:])
        else:
            body = rest.replace(ARTIFACT_CLOSE, "")
            truncated = True

        body = _clean_body(body)
        if not body:
            return None

        if truncated:
            logger.info("Artifact body looks cut off", extra={"ordinal": ordinal})
        return self._build(meta, fence.group(1), body, ordinal, truncated=truncated)

    def _has_sentinel(self, text: str) -> bool:
        return any(sentinel in text for sentinel in self.truncation_sentinels)


def strip_artifacts(text: str) -> str:
    """Module-level convenience wrapper used by transcript renderers."""
    return ArtifactStore(truncation_sentinels=()).strip_artifacts(text)
