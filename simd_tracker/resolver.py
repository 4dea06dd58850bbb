"""Map pull requests and discussions onto SIMD identifiers.

Resolution is an ordered list of pure rules. File evidence comes first because
someone explicitly added or edited a proposal document; title patterns are a
weaker hint and are only consulted when no proposal file names an id.
"""

import posixpath
import re

from simd_tracker import config

SIMD_ID_TOKEN = re.compile(r"(\d{4})")
PLACEHOLDER_PREFIX = re.compile(r"^x{4}-", re.IGNORECASE)
TITLE_SIMD_ID = re.compile(r"SIMD[-\s:]*(\d{4})(?!\d)", re.IGNORECASE)
TITLE_SIMD_NUMBER = re.compile(r"SIMD[-\s:]*(\d+)", re.IGNORECASE)
TEXT_SIMD_ID = re.compile(r"SIMD[-\s:]?(\d{4})", re.IGNORECASE)


def format_simd_id(number: int) -> str:
    """Zero-pad a number into a SIMD id."""
    return f"{int(number):04d}"


def is_proposal_path(path: str) -> bool:
    return path.startswith(f"{config.PROPOSALS_DIR}/") and path.endswith(config.PROPOSAL_EXTENSION)


def extract_simd_id(text: str | None) -> str | None:
    """Return the first SIMD-NNNN reference in free text."""
    if not text:
        return None
    match = TEXT_SIMD_ID.search(text)
    return match.group(1) if match else None


def filename_simd_id(filename: str) -> str | None:
    """Return the 4-digit id embedded in a proposal filename."""
    match = SIMD_ID_TOKEN.search(filename)
    return match.group(1) if match else None


def first_proposal_path(files: list[str]) -> str | None:
    for path in files:
        if is_proposal_path(path):
            return path
    return None


def match_proposal_file(pull_request: dict) -> dict | None:
    """Resolve from a changed proposal document."""
    for path in pull_request.get("files") or []:
        if not is_proposal_path(path):
            continue
        filename = posixpath.basename(path)
        if PLACEHOLDER_PREFIX.match(filename):
            return {"simd_id": format_simd_id(pull_request["number"]), "proposal_file_path": path}
        simd_id = filename_simd_id(filename)
        if simd_id:
            return {"simd_id": simd_id, "proposal_file_path": path}
    return None


def match_title_simd_id(pull_request: dict) -> dict | None:
    """Resolve from a SIMD-NNNN reference in the title."""
    match = TITLE_SIMD_ID.search(pull_request.get("title") or "")
    if not match:
        return None
    return {
        "simd_id": match.group(1),
        "proposal_file_path": first_proposal_path(pull_request.get("files") or []),
    }


def match_self_referencing_title(pull_request: dict) -> dict | None:
    """Resolve a title that names the pull request's own number."""
    number = int(pull_request["number"])
    for match in TITLE_SIMD_NUMBER.finditer(pull_request.get("title") or ""):
        if int(match.group(1)) == number:
            return {
                "simd_id": format_simd_id(number),
                "proposal_file_path": first_proposal_path(pull_request.get("files") or []),
            }
    return None


RESOLUTION_RULES = (
    match_proposal_file,
    match_title_simd_id,
    match_self_referencing_title,
)


def resolve(pull_request: dict) -> dict | None:
    """Return {"simd_id", "proposal_file_path"} for a pull request, or None."""
    for rule in RESOLUTION_RULES:
        resolution = rule(pull_request)
        if resolution:
            return resolution
    return None
