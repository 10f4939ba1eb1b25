from enum import Enum
from typing import Optional

from emphasize.config import PublicationMode
from emphasize.schemas import ArticleIngest, ArticleStatus


class Resolution(Enum):
    """
    Outcome of the draft rule for one article.
    SUPPRESSED is not a status: the article must be left out of every output.
    """
    PUBLISHED = ArticleStatus.PUBLISHED
    DRAFT = ArticleStatus.DRAFT
    SUPPRESSED = None

    @property
    def status(self) -> Optional[ArticleStatus]:
        return self.value

    @property
    def visible(self) -> bool:
        return self is not Resolution.SUPPRESSED


def resolve(draft: bool, drafts_visible: bool) -> Resolution:
    """
    Decide whether an article is Published, a visible Draft, or suppressed.

    Pure function of its two inputs: nothing is cached, so a change to either
    the draft flag or the mode is reflected on the next call.
    """
    if not draft:
        return Resolution.PUBLISHED
    if drafts_visible:
        return Resolution.DRAFT
    return Resolution.SUPPRESSED


def resolve_article(article: ArticleIngest, mode: PublicationMode) -> Resolution:
    return resolve(article.draft, mode.drafts_visible)
