"""Prompt construction for classification, expansion and answer generation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from docsrag.models import Intent, SearchHit

INTENT_LABELS = ("how-to", "concept", "reference", "troubleshooting", "example", "general")

CLASSIFICATION_PROMPT = """Classify the intent of this documentation search query. Return only the category name.

Query: "{query}"

Categories:
- how-to: Questions asking how to do something (starts with "how", asks for steps/instructions)
- concept: Questions asking what something is or how it works conceptually
- reference: Questions asking for specific API details, parameters, or technical specifications
- troubleshooting: Questions about errors, problems, or debugging
- example: Questions asking for code examples or sample implementations
- general: General questions that don't fit other categories

Category:"""

EXPANSION_PROMPT = """Generate 2-3 alternative phrasings for this documentation search query. \
Each phrasing should maintain the same meaning but use different words. Return each alternative on a new line.

Original query: "{query}"

Alternatives:"""

GROUNDED_PROMPT = """You are a helpful documentation assistant. Answer the user's question based ONLY on the \
provided documentation context.

URL rules:
- Never invent URLs or links.
- Only link to a document using the exact frontend_url listed in its context entry.
- If a document has no frontend_url, do not link it.

User's question: "{query}"

Documentation context:
{context}

Instructions:
- Provide a helpful, accurate answer based on the documentation
- Use markdown formatting with headings (##, ###), code blocks and lists
- Be specific and include relevant details from the documentation
- If the context doesn't contain enough information, say so clearly"""

INTENT_INSTRUCTIONS = {
    "how-to": """Additional instructions for how-to answers:
- Structure the answer as numbered steps
- List prerequisites or setup in a separate section
- Use code blocks for commands and code
- Add a "Next Steps" section if relevant""",
    "reference": """Additional instructions for reference answers:
- Use tables for parameter descriptions when appropriate
- Use `inline code` for technical terms, parameters and values
- Organise details under clear headings""",
    "troubleshooting": """Additional instructions for troubleshooting answers:
- Start with a brief problem summary
- List potential causes as bullet points
- Give step-by-step solutions as numbered lists
- Mention prevention strategies where the documentation covers them""",
    "example": """Additional instructions for example answers:
- Focus on code examples with syntax highlighting
- Explain what each example demonstrates
- Comment key parts inside the code blocks""",
    "concept": """Additional instructions for concept answers:
- Start with a clear definition in **bold**
- Break complex ideas into short sections with headings
- Illustrate with examples from the context""",
}

FALLBACK_PROMPT = """You are a helpful documentation assistant. No page of the documentation matched the \
user's question, so answer from general knowledge.

User's question: "{query}"

Instructions:
- Keep the answer short and practical
- Say clearly that the answer is not based on the project documentation
- Suggest how the user could rephrase the question to find documentation"""

FALLBACK_NOTICE = (
    "## Information Not Found\n\n"
    'I couldn\'t find specific information about "{query}" in the available documentation. '
    "The answer below uses general knowledge.\n\n"
)


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Configuration for prompt construction."""

    excerpt_chars: int = 500
    max_context_chars: int = 6000


class PromptBuilder:
    """Builds prompts and context blocks for the provider."""

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()

    @property
    def config(self) -> PromptBuilderConfig:
        return self._config

    def classification(self, query: str) -> str:
        return CLASSIFICATION_PROMPT.format(query=query)

    def expansion(self, query: str) -> str:
        return EXPANSION_PROMPT.format(query=query)

    def build_context(self, hits: Sequence[SearchHit]) -> str:
        """One excerpt per hit, joined by blank lines and capped in total length."""

        if not hits:
            return ""
        entries = []
        for index, hit in enumerate(hits, start=1):
            metadata = hit.chunk.metadata
            section = f" ({metadata.section})" if metadata.section else ""
            text = hit.chunk.text
            if len(text) > self._config.excerpt_chars:
                text = text[: self._config.excerpt_chars] + "..."
            entry = f"Document {index}: {metadata.file_name}{section}\n{text}"
            if metadata.frontend_url:
                entry += f"\nfrontend_url: {metadata.frontend_url}"
            entries.append(entry)
        context = "\n\n".join(entries)
        return context[: self._config.max_context_chars]

    def grounded(self, query: str, context: str, intent: Intent | None = None) -> str:
        prompt = GROUNDED_PROMPT.format(query=query, context=context)
        extra = INTENT_INSTRUCTIONS.get(intent.label) if intent else None
        if extra:
            prompt = f"{prompt}\n\n{extra}"
        return prompt

    def fallback(self, query: str) -> str:
        return FALLBACK_PROMPT.format(query=query)

    def fallback_notice(self, query: str) -> str:
        return FALLBACK_NOTICE.format(query=query)

    @staticmethod
    def sources_section(hits: Sequence[SearchHit]) -> str:
        lines = []
        for index, hit in enumerate(hits, start=1):
            metadata = hit.chunk.metadata
            label = metadata.file_name + (f" - {metadata.section}" if metadata.section else "")
            title = f"[{label}]({metadata.frontend_url})" if metadata.frontend_url else label
            lines.append(
                f"{index}. **{title}** `{metadata.category}`\n"
                f"   - File: `{metadata.file_path}`\n"
                f"   - Relevance: {hit.similarity * 100:.1f}%"
            )
        return "## Sources\n\n" + "\n\n".join(lines)
