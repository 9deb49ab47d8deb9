"""
Prompt loading and formatting utilities.

Handles loading stage prompts from markdown files and building the user
prompt for each stage from its committed upstream items.
"""

import json
from pathlib import Path

from src.models.enums import LayerName
from src.models.inference import StageRequest


# Base directory for prompts (relative to project root)
PROMPTS_DIR = Path(__file__).parent.parent.parent / "prompts"


def load_prompt(name: str, category: str = "stages") -> str:
    """
    Load a prompt template from a markdown file.

    Args:
        name: The prompt name (e.g., "foundation", "strategic")
        category: The prompt category directory

    Returns:
        The prompt template as a string

    Raises:
        FileNotFoundError: If the prompt file doesn't exist
    """
    prompt_path = PROMPTS_DIR / category / f"{name}.md"

    if not prompt_path.exists():
        raise FileNotFoundError(
            f"Prompt file not found: {prompt_path}. "
            f"Expected prompt '{name}' in category '{category}'."
        )

    return prompt_path.read_text()


def build_stage_user_prompt(request: StageRequest) -> str:
    """
    Build the user prompt for a stage.

    The foundation stage sees the report; later stages see only the items
    of earlier layers, serialized as JSON.
    """
    if request.stage == LayerName.FOUNDATION and request.report is not None:
        report = request.report
        header = []
        if report.report_date:
            header.append(f"Report date: {report.report_date.isoformat()}")
        if report.reporter:
            header.append(f"Reporter: {report.reporter}")
        meta = "\n".join(header)
        return f"""## Adverse Event Report

{meta}

{report.text}
"""

    sections = []
    for layer, items in request.upstream.items():
        sections.append(
            f"## {LayerName(layer).value.title()} Items\n\n{json.dumps(items, indent=2)}"
        )
    return "\n\n".join(sections)
