#!/usr/bin/env python3
"""
Adversarial Review Prompt Templates

Templates are markdown documents with optional YAML frontmatter. Lookup order
for a phase: custom initial-review file (initial_review only), the configured
prompts directory, then the templates shipped with the package.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from adversarial_review.utils import read_text

logger = logging.getLogger("adversarial_review")

PACKAGE_PROMPTS_DIR = Path(__file__).parent / "prompts"

INITIAL_REVIEW = "initial_review"
CROSS_REVIEW = "cross_review"
META_REVIEW = "meta_review"
SYNTHESIS = "synthesis"
PHASE_TEMPLATES = (INITIAL_REVIEW, CROSS_REVIEW, META_REVIEW, SYNTHESIS)


def load_frontmatter_doc(path: Path) -> Tuple[Dict[str, Any], str]:
    """Load document with YAML frontmatter. Returns (metadata, body).

    Frontmatter is only recognized when the first line is exactly ``---``,
    a later line closes it with ``---`` and the enclosed YAML is a mapping.
    Anything else (a leading horizontal rule, a scalar) is returned whole.
    """
    if not path.exists():
        return {}, ""

    content = read_text(path)
    lines = content.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, content

    closing = next((idx for idx, line in enumerate(lines[1:], 1) if line.strip() == "---"), None)
    if closing is None:
        return {}, content

    block = "\n".join(lines[1:closing])
    try:
        frontmatter = yaml.safe_load(block)
    except yaml.YAMLError as e:
        logger.warning(f"YAML parse error in {path}: {e}")
        return {}, content
    if frontmatter is None and not block.strip():
        frontmatter = {}
    if not isinstance(frontmatter, dict):
        logger.debug(f"Leading block in {path} is not YAML frontmatter, using whole file")
        return {}, content
    return frontmatter, "\n".join(lines[closing + 1:]).strip()


class PromptTemplateStore:
    """Resolves the prompt template for each phase."""

    def __init__(self, prompts_dir: Optional[Path] = None, custom_review_prompt: Optional[Path] = None):
        self.prompts_dir = prompts_dir
        self.custom_review_prompt = custom_review_prompt

    def template_path(self, phase_name: str) -> Path:
        if phase_name not in PHASE_TEMPLATES:
            raise ValueError(f"Unknown prompt template '{phase_name}'")
        if phase_name == INITIAL_REVIEW and self.custom_review_prompt:
            return self.custom_review_prompt
        if self.prompts_dir:
            local = self.prompts_dir / f"{phase_name}.md"
            if local.exists():
                return local
        return PACKAGE_PROMPTS_DIR / f"{phase_name}.md"

    def get_template(self, phase_name: str) -> str:
        """Return the template body for a phase.

        Raises:
            ValueError: If phase_name is not a known template
            FileNotFoundError: If the resolved template file doesn't exist
        """
        path = self.template_path(phase_name)
        if not path.exists():
            raise FileNotFoundError(f"Prompt template not found: {path}")
        meta, body = load_frontmatter_doc(path)
        if meta.get("description"):
            logger.debug(f"Prompt {phase_name}: {meta['description']}")
        return body
