"""Prompt decoration applied before a task is handed to a worker."""

from __future__ import annotations

VALIDATION_PREFIX = """**BEFORE STARTING:** Analyze this task for 30 seconds:
1. Identify potential errors or edge cases in the approach
2. Check for missing implementation gaps
3. Consider improvements to make the task more robust
4. If you find issues, document them and proceed with the enhanced approach.

**TASK:**
"""

VERIFICATION_SUFFIX = """

**AFTER COMPLETING:** Perform 2 verification iterations:
1. **First pass:** Review all changes for errors, type issues, missing imports, broken references
2. **Second pass:** Check for edge cases, incomplete implementations, or gaps in the solution
3. **Report format:** End your response with:
   ```
   ## Verification Report
   - Errors found: [list or "None"]
   - Gaps identified: [list or "None"]
   - Improvements made: [list]
   - Confidence: [High/Medium/Low]
   ```
"""


def enhance_prompt(prompt: str, *, enabled: bool = True) -> str:
    """Wrap ``prompt`` with the pre-task validation and post-task verification sections."""

    if not enabled:
        return prompt
    return f"{VALIDATION_PREFIX}{prompt}{VERIFICATION_SUFFIX}"


__all__ = ["VALIDATION_PREFIX", "VERIFICATION_SUFFIX", "enhance_prompt"]
