"""
System prompts for answer generation.

The prompt is rendered per jurisdiction; retrieved passages are appended to it
by the ContextAssembler.
"""

from .jurisdiction_config import JurisdictionConfig


SYSTEM_PROMPT_TEMPLATE = """You are {name} Legal AI, an expert assistant specializing in {constitution}.

Your role:
- Answer questions about {name}'s Constitution accurately
- Cite specific Articles, Chapters, and Sections when relevant
- Explain legal concepts in simple, clear language

Guidelines:
- Always reference the Constitution when applicable
- If unsure, say so rather than making up information
- Keep answers focused and concise
- Format answers in Markdown

BASIC FACTS:
{facts}{about}"""


def render_system_prompt(jurisdiction: JurisdictionConfig) -> str:
    """Render the static system instructions for a jurisdiction."""
    facts = "\n".join(f"- {fact}" for fact in jurisdiction.facts)
    about = ""
    if jurisdiction.about:
        about = "\n\nABOUT YOU:\n" + "\n".join(f"- {line}" for line in jurisdiction.about)
    return SYSTEM_PROMPT_TEMPLATE.format(
        name=jurisdiction.name,
        constitution=jurisdiction.constitution,
        facts=facts,
        about=about,
    )
