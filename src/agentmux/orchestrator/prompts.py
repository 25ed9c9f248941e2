"""Prompt text sent to the agent for task execution.

The instructions avoid the words the failure detector looks for, so an
echoed prompt in the terminal buffer is not mistaken for a failed run.
"""

from __future__ import annotations

EXECUTION_INSTRUCTIONS = """CRITICAL INSTRUCTIONS - READ CAREFULLY:
1. This is a ONE-WAY communication. You are an agentic assistant that MUST carry out tasks directly.
2. DO NOT ask questions. DO NOT ask for confirmation. DO NOT ask "Would you like me to..." or similar.
3. If something blocks you (runtime version, missing dependencies, configuration), resolve it automatically:
   - For runtime version mismatches: use the installed version or install the required one
   - For missing dependencies: install them
   - For configuration gaps: configure them using sensible defaults
4. Carry out the task immediately without any user interaction.
5. AFTER completing the task, check every file you changed for syntax problems and correct them:
   - For TypeScript/JavaScript projects: run "tsc --noEmit", "node --check" or the project's linter
   - For Python projects: run "python3 -m py_compile" on modified files or use a linter
   - For other languages: use the matching syntax checker
   - Keep checking and correcting until the checks pass"""

EXECUTION_REMINDER = (
    "Remember: act immediately. No questions. No confirmations. After completing the task, "
    "check for syntax problems and correct them. Use --yes for commands where applicable."
)


def build_execution_prompt(title: str, description: str | None, command: str) -> str:
    """Build the one-way execution prompt for a task.

    Args:
        title: Task title.
        description: Detailed task instructions, if any.
        command: Code or command the agent should carry out. On retries this
            is the fix suggested by the previous iteration.

    Returns:
        The full prompt text.
    """
    task_lines = [title]
    if description:
        task_lines.append(description)
    return "\n".join(
        [
            EXECUTION_INSTRUCTIONS,
            "",
            "TASK TO EXECUTE:",
            *task_lines,
            "",
            command,
            "",
            EXECUTION_REMINDER,
        ]
    )
