"""Per-game and per-language review statistics."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import reduce
from typing import Any

MAX_TOP_REVIEWS = 10
MAX_GAME_LANGUAGES = 3


@dataclass(frozen=True)
class TopReview:
    """A review's text and the number of helpful votes it received."""

    text: str
    votes_helpful: int


@dataclass
class Language:
    """Review count and most helpful reviews written in one language."""

    review_count: int = 0
    top_reviews: list[TopReview] = field(default_factory=list)

    def copy(self) -> Language:
        return Language(self.review_count, list(self.top_reviews))

    def merge(self, other: Language) -> None:
        """Add the other language's counts and keep the ten most voted reviews."""
        self.review_count += other.review_count
        self.top_reviews.extend(other.top_reviews)
        self.top_reviews.sort(key=lambda review: review.votes_helpful, reverse=True)
        del self.top_reviews[MAX_TOP_REVIEWS:]


def _most_voted(reviews: list[TopReview]) -> TopReview:
    # On ties the later review wins.
    return reduce(
        lambda best, review: review if review.votes_helpful >= best.votes_helpful else best,
        reviews,
    )


@dataclass
class Game:
    """Review count of a game and the languages its reviews were written in."""

    reviews: int = 0
    languages: dict[str, Language] = field(default_factory=dict)

    def copy(self) -> Game:
        return Game(self.reviews, {name: data.copy() for name, data in self.languages.items()})

    def merge(self, other: Game) -> None:
        """Add the other game's counts, keeping one top review per language."""
        self.reviews += other.reviews
        for name, other_data in other.languages.items():
            current = self.languages.get(name)
            if current is None:
                self.languages[name] = other_data.copy()
                continue
            current.review_count += other_data.review_count
            candidates = current.top_reviews + other_data.top_reviews
            if candidates:
                current.top_reviews = [_most_voted(candidates)]
            else:
                current.top_reviews = candidates


def _ranked(items: dict[str, Any], count_of) -> list[tuple[str, Any]]:
    return sorted(items.items(), key=lambda item: (-count_of(item[1]), item[0]))


def _game_languages(game: Game) -> list[dict[str, Any]]:
    ranked = _ranked(game.languages, lambda data: data.review_count)[:MAX_GAME_LANGUAGES]
    return [
        {
            "language": name,
            "review_count": data.review_count,
            "top_review": data.top_reviews[0].text,
            "top_review_votes": data.top_reviews[0].votes_helpful,
        }
        for name, data in ranked
        if data.top_reviews
    ]


def top_games(games: dict[str, Game], count: int) -> list[dict[str, Any]]:
    """Return the ``count`` most reviewed games with their top three languages."""
    ranked = _ranked(games, lambda game: game.reviews)[:count]
    return [
        {
            "game": name,
            "languages": _game_languages(game),
            "review_count": game.reviews,
        }
        for name, game in ranked
    ]


def top_languages(languages: dict[str, Language], count: int) -> list[dict[str, Any]]:
    """Return the ``count`` most used languages with up to ten top reviews each."""
    ranked = _ranked(languages, lambda data: data.review_count)[:count]
    return [
        {
            "language": name,
            "review_count": data.review_count,
            "top_reviews": [
                {"review": review.text, "votes": review.votes_helpful}
                for review in data.top_reviews[:MAX_TOP_REVIEWS]
            ],
        }
        for name, data in ranked
    ]