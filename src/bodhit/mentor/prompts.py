"""Fixed assistant texts used by the mentor conversation."""

from __future__ import annotations

WELCOME_MESSAGE = """You are interacting with BODHIT - the Project-Skill Chatbot. My role: teach, guide, and evaluate your project work; I will NOT write code for you.

Before I create milestones or give guidance, provide all of these inputs (I will NOT proceed until confirmed):
- Project idea (one-line description)
- Tech stack / language (primary)
- Skill level (beginner / intermediate / advanced)
- Timeline (weeks or target date)

Please provide the four fields in one message in this format:
Project idea: ...
Tech stack: ...
Skill level: ...
Timeline: ...

After you provide and confirm these, I will propose a numbered sequence of milestones. I will not produce runnable code - I will only explain concepts, ask guiding questions, and produce verifiable milestone plans."""

INTAKE_FORMAT_HELP = (
    "Please provide the required intake fields in this exact format:\n"
    "Project idea: ...\n"
    "Tech stack: ...\n"
    "Skill level: ...\n"
    "Timeline: ...\n"
    "\n"
    "Or confirm the parsed intake with 'yes'/'no'."
)

INTAKE_ECHO_TEMPLATE = (
    "I parsed your intake as:\n"
    "Project idea: {project_idea}\n"
    "Tech stack: {tech_stack}\n"
    "Skill level: {skill_level}\n"
    "Timeline: {timeline}\n"
    "\n"
    "Please reply with **yes** to confirm or **no** to re-enter the details."
)

INTAKE_CONFIRMED = (
    "Intake confirmed. Tell me which milestone you'd like to start with, "
    "or ask me to create the full milestone sequence."
)

INTAKE_REJECTED = "Okay - please re-enter the intake fields in the required format."

CODE_REQUEST_REFUSAL = (
    "I cannot provide code. Describe your intended approach and I will guide "
    "the logic, tests, and structure."
)

QUICK_PROMPTS = (
    "Review my current milestone progress",
    "Suggest the next best task to complete",
    "Create mentor-ready status summary",
    "Audit my project structure and gaps",
)
