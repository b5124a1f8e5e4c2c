"""Prompt templates the operator hands to the coding assistant."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .git_utils import render_commit_message

if TYPE_CHECKING:
    from .config import AgentConfig
    from .models import Feature

FEATURE_PROMPT_TEMPLATE = """\
You are implementing a single feature for this project. Follow these instructions precisely.

## Your Task

Implement {feature_id}: {description}
Category: {category} | Priority: {priority} | Complexity: {complexity}
{dependencies_text}
### Implementation Steps
{steps_text}
{notes_text}
## Protocol

1. **Orientation**: Check `git log --oneline -5` for recent context.
2. **Read project state**: Read `{features_file}` and the progress log at `{progress_file}`.
3. **Implement**: Work through the implementation steps above. Use the project's existing patterns and conventions.
4. **Verify**: {verification_instruction}
5. **Commit**: Create a git commit with message: `{commit_message}`
6. **STOP**: Print a short completion summary. Do NOT continue to the next feature. One feature per session.

## Important Rules

- Work on exactly ONE feature, then stop.
- Never remove or edit feature descriptions -- only implement them.
- If the conversation is getting long, summarize progress and ask for a new session.
"""


def build_feature_prompt(feature: Feature, config: AgentConfig) -> str:
    """Build the full prompt for one feature session."""
    if feature.steps:
        steps_text = "\n".join(f"  {i + 1}. {step}" for i, step in enumerate(feature.steps))
    else:
        steps_text = "  (no steps recorded; derive them from the description)"

    dependencies_text = ""
    if feature.dependencies:
        dependencies_text = f"Builds on: {', '.join(feature.dependencies)}\n"

    notes_text = f"\n### Notes\n{feature.notes}\n" if feature.notes else ""

    if config.run_tests and config.test_command:
        verification = f"Run `{config.test_command}` and make sure it passes."
    else:
        verification = "Verify the feature works as expected and the build has no errors."

    return FEATURE_PROMPT_TEMPLATE.format(
        feature_id=feature.id,
        description=feature.description,
        category=feature.category.value,
        priority=feature.priority.value,
        complexity=feature.estimated_complexity.value,
        dependencies_text=dependencies_text,
        steps_text=steps_text,
        notes_text=notes_text,
        features_file=config.features_file,
        progress_file=config.progress_file,
        verification_instruction=verification,
        commit_message=render_commit_message(config.commit_template, feature),
    )
