"""Notion report MCP server.

Provides report import into Notion via three tools:
- report_compile: Dry run; show the request plan for a report
- report_upload: Compile and execute; returns the new page URL
- report_check_auth: Verify the integration token

Token: Passed via --token-file <path> CLI argument at startup.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from mcp.server.fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from .errors import CancellationRequested, ExecutionError, PlanError, RemoteApiError
from .executor import NotionTransport
from .pipeline import compile_report, upload_report

logger = logging.getLogger("notion-report")

# =============================================================================
# Credential Management
# =============================================================================

_notion_token: Optional[str] = None


def _get_token() -> str:
    """Get the Notion token (set via --token-file CLI arg)."""
    if _notion_token is None:
        raise RuntimeError(
            "No Notion token. Pass --token-file <path> on the command line."
        )
    return _notion_token


# =============================================================================
# Page IDs
# =============================================================================

UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{12}$',
    re.IGNORECASE
)
NOTION_URL_PATTERN = re.compile(
    r'https?://(?:www\.)?notion\.(?:so|site)/(?:[^/]+/)?([^?#]+)',
    re.IGNORECASE
)
PAGE_ID_SUFFIX_PATTERN = re.compile(
    r'([0-9a-f]{32}|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$',
    re.IGNORECASE
)


def normalize_uuid(uuid_str: str) -> str:
    """Normalize a UUID to standard format with dashes.

    Raises:
        ValueError: If input is not a valid UUID (wrong length or invalid chars).
    """
    clean = uuid_str.replace('-', '').lower()
    if len(clean) != 32:
        raise ValueError(f"Invalid UUID length: {uuid_str}")
    if not all(c in '0123456789abcdef' for c in clean):
        raise ValueError(f"Invalid UUID characters: {uuid_str}")
    return f"{clean[:8]}-{clean[8:12]}-{clean[12:16]}-{clean[16:20]}-{clean[20:]}"


def resolve_page_id(ref: str) -> str:
    """Accept a page UUID (with or without dashes) or a Notion page URL.

    Raises:
        ValueError: If no page id can be found in ref.
    """
    ref = ref.strip()
    if UUID_PATTERN.match(ref):
        return normalize_uuid(ref)
    match = NOTION_URL_PATTERN.match(ref)
    if match:
        uuid_match = PAGE_ID_SUFFIX_PATTERN.search(match.group(1))
        if uuid_match:
            return normalize_uuid(uuid_match.group(1))
    raise ValueError(f"Not a Notion page id or URL: {ref}")


# =============================================================================
# Self-Healing Error Messages
# =============================================================================

def _error(code: str, message: str, hint: str | None = None, ref: str | None = None) -> str:
    """Format error with optional self-healing hint."""
    parts = [f"error: {code} - {message}"]
    if ref:
        parts.append(f"ref: {ref}")
    if hint:
        parts.append(f"hint: {hint}")
    return "\n".join(parts)


HINTS = {
    "bad_destination": "Pass the destination page's UUID or its full Notion URL.",
    "ref_gone": "The page may be deleted, in trash, or not shared with this integration.",
    "missing_capability": "Share the destination page with the integration: open in Notion → Share → invite the integration.",
    "rate_limited": "Too many requests. Wait a moment and try again.",
    "invalid_token": "Token is invalid or expired. Check the --token-file contents.",
    "resume": "Earlier requests succeeded; the partially built page is left in place.",
}


def _hint_for(error: RemoteApiError) -> Optional[str]:
    if error.status == 401:
        return HINTS["invalid_token"]
    if error.status == 403:
        return HINTS["missing_capability"]
    if error.status == 404:
        return HINTS["ref_gone"]
    if error.status == 429:
        return HINTS["rate_limited"]
    return None


def _format_steps(steps: list[str], limit: int = 50) -> list[str]:
    lines = [f"  {i + 1}. {step}" for i, step in enumerate(steps[:limit])]
    if len(steps) > limit:
        lines.append(f"  ... {len(steps) - limit} more")
    return lines


# =============================================================================
# MCP Server
# =============================================================================

mcp = FastMCP("notion-report", host="127.0.0.1", port=2052)


@mcp.tool()
def report_compile(
    content: str,
    destination: str,
    content_type: str = "markdown",
    title: str | None = None
) -> str:
    """Compile a report into a Notion request plan without sending anything.

    Args:
        content: Report text (Markdown or JSON).
        destination: Parent page UUID or Notion URL.
        content_type: "markdown" (default) or "json".
        title: Page title. Defaults to the first H1, then "Imported report".

    Returns:
        Request counts, the ordered steps and any advisory notes.
    """
    try:
        destination_id = resolve_page_id(destination)
    except ValueError as e:
        return _error("BAD_DESTINATION", str(e), hint=HINTS["bad_destination"], ref=destination)

    try:
        plan = compile_report(content, content_type, destination_id, title=title)
    except ValueError as e:
        return _error("BAD_CONTENT", str(e))
    except PlanError as e:
        return _error(e.code, e.message)

    counts = plan.summary()
    lines = [
        f"requests: {counts['requests']} (appends {counts['appends']}, databases {counts['databases']}, "
        f"properties {counts['properties']}, rows {counts['rows']}, uploads {counts['uploads']})",
        "steps:",
    ]
    lines.extend(_format_steps(plan.steps))
    if plan.notes:
        lines.append("notes:")
        lines.extend(f"  - {note}" for note in plan.notes)
    return "\n".join(lines)


@mcp.tool()
async def report_upload(
    content: str,
    destination: str,
    content_type: str = "markdown",
    title: str | None = None
) -> str:
    """Import a report into Notion as a new page under destination.

    Markdown tables become inline databases (typed columns, one row page
    per table row). Large JSON is attached as a file.

    Args:
        content: Report text (Markdown or JSON).
        destination: Parent page UUID or Notion URL.
        content_type: "markdown" (default) or "json".
        title: Page title. Defaults to the first H1, then "Imported report".

    Returns:
        The new page URL and totals, or an error with a hint.
    """
    try:
        token = _get_token()
    except RuntimeError as e:
        return _error("NO_TOKEN", str(e), hint=HINTS["invalid_token"])
    try:
        destination_id = resolve_page_id(destination)
    except ValueError as e:
        return _error("BAD_DESTINATION", str(e), hint=HINTS["bad_destination"], ref=destination)

    try:
        outcome = await upload_report(content, content_type, destination_id, token, title=title)
    except CancellationRequested as e:
        return _error("CANCELLED", str(e))
    except ExecutionError as e:
        hint = _hint_for(e.cause) or HINTS["resume"]
        return _error(e.code, e.message, hint=hint, ref=e.label)
    except RemoteApiError as e:
        return _error(e.code, e.message, hint=_hint_for(e))
    except PlanError as e:
        return _error(e.code, e.message)
    except ValueError as e:
        return _error("BAD_CONTENT", str(e))

    totals = outcome.result.totals
    lines = [
        f"url: {outcome.url}",
        f"blocks: {totals['blocks_appended']}  databases: {totals['databases']}  rows: {totals['rows']}",
    ]
    if totals["aborted_tables"]:
        lines.append(f"tables rendered as text: {totals['aborted_tables']}")
    summary = outcome.report.summary()
    if summary["repairedBlocks"] or summary["skippedBlocks"]:
        lines.append(f"repaired: {summary['repairedBlocks']}  skipped: {summary['skippedBlocks']}")
    return "\n".join(lines)


async def _check_auth(token: str) -> dict:
    async with NotionTransport(token) as client:
        return await client.whoami()


@mcp.tool()
async def report_check_auth() -> str:
    """Verify Notion authentication and return workspace info."""
    try:
        token = _get_token()
    except RuntimeError as e:
        return _error("NO_TOKEN", str(e), hint=HINTS["invalid_token"])

    try:
        result = await _check_auth(token)
    except RemoteApiError as e:
        if e.status == 401:
            return _error("INVALID_TOKEN", "Token is invalid or expired", hint=HINTS["invalid_token"])
        elif e.status == 403:
            return _error("INSUFFICIENT_PERMISSIONS", "Token lacks required permissions")
        return _error("HTTP_ERROR", f"HTTP {e.status}")

    bot_name = result.get("name", "Unknown")
    bot_type = result.get("type", "unknown")
    workspace_name = result.get("bot", {}).get("workspace_name", "Unknown workspace")
    return (
        f"authenticated as '{bot_name}' ({bot_type}) "
        f"in workspace '{workspace_name}'"
    )


# =============================================================================
# HTTP Endpoint (/health)
# =============================================================================

async def health_endpoint(request: Request) -> JSONResponse:
    """Health check endpoint for easy testing."""
    token_loaded = _notion_token is not None

    auth_status = None
    if token_loaded:
        try:
            result = await _check_auth(_notion_token)
            auth_status = result.get("bot", {}).get("workspace_name", "connected")
        except RemoteApiError as e:
            auth_status = f"error: HTTP {e.status}"

    return JSONResponse({
        "status": "ok",
        "token_loaded": token_loaded,
        "workspace": auth_status,
    })


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """Run the Notion report MCP server.

    Usage:
        notion-report --token-file ~/.notion_token          # stdio mode
        notion-report --token-file ~/.notion_token --http   # HTTP on localhost:2052
    """
    import argparse

    parser = argparse.ArgumentParser(description="Notion Report MCP Server")
    parser.add_argument(
        "--token-file",
        required=True,
        help="Path to file containing Notion API token"
    )
    parser.add_argument(
        "--http",
        action="store_true",
        help="Run as HTTP server on localhost:2052 instead of stdio"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    global _notion_token
    token_path = Path(args.token_file).expanduser()
    if not token_path.exists():
        logger.error(f"Token file not found: {token_path}")
        raise SystemExit(1)
    _notion_token = token_path.read_text().strip()
    if not _notion_token:
        logger.error("Token file is empty")
        raise SystemExit(1)
    logger.info(f"Notion token loaded from {token_path}")

    if args.http:
        import uvicorn

        app = mcp.streamable_http_app()
        app.add_route("/health", health_endpoint, methods=["GET"])

        logger.info("Starting Notion report server on http://127.0.0.1:2052")
        uvicorn.run(app, host="127.0.0.1", port=2052, log_level="warning")
    else:
        mcp.run()


if __name__ == "__main__":
    main()
