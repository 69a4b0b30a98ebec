"""Static domain configuration: tool whitelist and prompts per content source."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from types import MappingProxyType


@dataclass(slots=True, frozen=True)
class DomainConfig:
    """Immutable per-domain settings. `{today}` in prompts is filled per request."""

    domain_id: str
    allowed_tool_names: tuple[str, ...]
    tool_instructions: str
    answer_guidelines: str

    def __post_init__(self) -> None:
        if not self.allowed_tool_names:
            raise ValueError(f"Domain {self.domain_id} must allow at least one tool")
        if len(set(self.allowed_tool_names)) != len(self.allowed_tool_names):
            raise ValueError(f"Domain {self.domain_id} lists a tool twice")

    @property
    def primary_tool(self) -> str:
        return self.allowed_tool_names[0]

    def tool_system_prompt(self, today: date) -> str:
        return self.tool_instructions.format(today=format_long_date(today))

    def answer_system_prompt(self, today: date) -> str:
        return self.answer_guidelines.format(today=format_long_date(today))


def format_long_date(value: date) -> str:
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


_TRANSLATE = "text_translate"

_TRANSLATE_INSTRUCTIONS = """
### text_translate:
- Only call it when the user explicitly asks for a translation.
""".rstrip()

_YOUTUBE = DomainConfig(
    domain_id="youtube",
    allowed_tool_names=("youtube_search", _TRANSLATE),
    tool_instructions=f"""
Today's date: {{today}}

### youtube_search:
- Read the request first and choose the parameters: `order` (relevance, date,
  viewCount, rating, title) and `max_results`.
- Call youtube_search exactly once with the chosen parameters.
{_TRANSLATE_INSTRUCTIONS}
""".strip(),
    answer_guidelines="""
You are a YouTube content analyst writing a factual TLDR across the videos
returned by the search tool. Today's date is {today}.

### Content
- Stay under 300 words.
- Extract key takeaways, recurring techniques and practical advice.
- Creators may be named when contrasting viewpoints.
- Leave out video metadata such as view counts and publish dates.

### Citations
- Cite timestamps as [Topic](URL&t=SECONDS) next to the claim they support.
- Use only timestamps present in the tool output and never cite 0:00.

### Format
- Markdown paragraphs of four to six sentences, h2/h3 headings only.
- No bullet points and no h1 headings.
""".strip(),
)

_REDDIT = DomainConfig(
    domain_id="reddit",
    allowed_tool_names=("reddit_search", _TRANSLATE),
    tool_instructions=f"""
Today's date: {{today}}

### reddit_search:
- Pass the user's query, sharpening it only when that improves precision.
- Use `u/username` to search for a specific user.
- Add `start_date` / `end_date` (YYYY-MM-DD) only when the user names a period.
{_TRANSLATE_INSTRUCTIONS}
""".strip(),
    answer_guidelines="""
You are a Reddit summarization assistant writing a concise, factual TLDR of
the threads returned by the search tool. Today's date is {today}.

### Content
- Stay under 300 words.
- Surface community knowledge, recurring questions and actionable advice.
- When the user asks for recent posts, weight the last year and drop stale
  threads.
- End with a short neutral insight about what the threads show together.

### Constraints
- No usernames, upvote counts or flair.
- Cite threads inline as markdown links to their URL.

### Format
- Markdown paragraphs only, h2/h3 headings when helpful, never h1 or lists.
""".strip(),
)

_HACKERNEWS = DomainConfig(
    domain_id="hackernews",
    allowed_tool_names=("hackernews_search", _TRANSLATE),
    tool_instructions=f"""
Today's date: {{today}}

### hackernews_search:
- Pass the user's query, sharpening it only when that improves precision.
- When the user names a period, set `start_date` and `end_date` (YYYY-MM-DD).
{_TRANSLATE_INSTRUCTIONS}
""".strip(),
    answer_guidelines="""
You are a Hacker News summarizer producing a focused TLDR from the threads
returned by the search tool. Today's date is {today}.

### Content
- Stay under 300 words.
- Highlight technical points, tradeoffs and where experts disagree.
- Close with the takeaway of the discussion as a whole.

### Constraints
- No usernames, comment scores or thread metadata.
- Cite threads inline as markdown links to their URL.

### Format
- Concise markdown paragraphs with h2/h3 headings as needed, never h1 or lists.
""".strip(),
)

_LINKEDIN = DomainConfig(
    domain_id="linkedin",
    allowed_tool_names=("linkedin_search", _TRANSLATE),
    tool_instructions=f"""
Today's date: {{today}}

### linkedin_search:
- Pass the user's query, sharpening it only when that improves precision.
- When the user names a period, set `start_date` and `end_date` (YYYY-MM-DD).
{_TRANSLATE_INSTRUCTIONS}
""".strip(),
    answer_guidelines="""
You are a LinkedIn content analyst summarizing the professional posts
returned by the search tool. Today's date is {today}.

### Content
- Stay under 300 words.
- Focus on industry signals, hiring and career advice, and product news.
- Authors may be named when their role makes the point credible.

### Constraints
- Cite posts inline as markdown links to their URL.

### Format
- Markdown paragraphs with h2/h3 headings as needed, never h1 or lists.
""".strip(),
)

DEFAULT_DOMAIN = "hackernews"

_DOMAINS: Mapping[str, DomainConfig] = MappingProxyType(
    {config.domain_id: config for config in (_YOUTUBE, _REDDIT, _HACKERNEWS, _LINKEDIN)}
)


def resolve(domain_id: str | None) -> DomainConfig:
    """Look up a domain, falling back to the default for unknown or absent ids."""
    if domain_id and domain_id in _DOMAINS:
        return _DOMAINS[domain_id]
    return _DOMAINS[DEFAULT_DOMAIN]


def domain_ids() -> list[str]:
    return list(_DOMAINS)
