"""Canned agent replies used by the mock task runner, per agent type."""
from __future__ import annotations

DEFAULT_AGENT_TYPE = "developer"

_TEMPLATES: dict[str, str] = {
    "developer": """## Implementation Complete

I've analyzed and completed the implementation for this task.

{context}

### What I Did:
1. Analyzed the requirements
2. Implemented the necessary changes
3. Added appropriate error handling
4. Tested the implementation

### Files Modified:
- Created/updated relevant source files
- Added unit tests
- Updated documentation as needed

### Summary:
The implementation is complete and ready for review. All tests pass and the code follows best practices.""",
    "designer": """## Design Work Complete

I've completed the design work for this task.

{context}

### Deliverables:
1. Created wireframes and mockups
2. Defined visual specifications
3. Documented component behavior

### Design Decisions:
- Followed existing design patterns for consistency
- Optimized for usability and accessibility
- Considered responsive design requirements

### Next Steps:
The designs are ready for review and implementation handoff.""",
    "researcher": """## Research Complete

I've completed the research for this task.

{context}

### Key Findings:
1. Gathered relevant data and insights
2. Analyzed competitive landscape
3. Identified best practices and recommendations

### Summary:
The research provides a solid foundation for decision-making. Key recommendations are included in the detailed report.""",
    "writer": """## Content Complete

I've finished the content work for this task.

{context}

### Deliverables:
1. Main content completed
2. Copy reviewed for clarity and tone
3. SEO considerations applied

### Notes:
The content aligns with brand guidelines and target audience expectations. Ready for editorial review.""",
    "analyst": """## Analysis Complete

I've completed the analysis for this task.

{context}

### Findings:
1. Data processed and analyzed
2. Key metrics identified
3. Insights and recommendations prepared

### Summary:
The analysis reveals actionable insights. Detailed findings are included in the report.""",
}


def agent_types() -> list[str]:
    return sorted(_TEMPLATES)


def mock_agent_response(
    agent_type: str, task_title: str, task_description: str | None = None
) -> str:
    """Return the canned report for *agent_type* (developer when unknown)."""
    if task_description:
        context = f"Task: {task_title}\nDescription: {task_description}"
    else:
        context = f"Task: {task_title}"
    template = _TEMPLATES.get(agent_type, _TEMPLATES[DEFAULT_AGENT_TYPE])
    return template.format(context=context)


__all__ = ["agent_types", "mock_agent_response", "DEFAULT_AGENT_TYPE"]
