from appsuite.reviews.stats import (
    MAX_TOP_REVIEWS,
    Game,
    Language,
    TopReview,
    top_games,
    top_languages,
)


def _game(reviews, **languages):
    return Game(reviews, {name: lang for name, lang in languages.items()})


def test_language_merge_adds_counts_and_orders_reviews():
    first = Language(3, [TopReview("low", 1)])
    second = Language(4, [TopReview("high", 9), TopReview("mid", 5)])
    first.merge(second)
    assert first.review_count == 3 + 4
    assert [r.text for r in first.top_reviews] == ["high", "mid", "low"]


def test_language_merge_keeps_at_most_ten_best():
    first = Language(6, [TopReview(f"a{v}", v) for v in range(6)])
    second = Language(6, [TopReview(f"b{v}", v + 6) for v in range(6)])
    all_votes = [r.votes_helpful for r in first.top_reviews + second.top_reviews]
    first.merge(second)
    kept = [r.votes_helpful for r in first.top_reviews]
    assert len(kept) == MAX_TOP_REVIEWS
    assert kept == sorted(kept, reverse=True)
    dropped = list(all_votes)
    for vote in kept:
        dropped.remove(vote)
    assert min(kept) >= max(dropped)


def test_language_merge_is_stable_on_ties():
    first = Language(1, [TopReview("first", 2)])
    first.merge(Language(1, [TopReview("second", 2)]))
    assert [r.text for r in first.top_reviews] == ["first", "second"]


def test_game_merge_keeps_single_most_voted_review():
    game = _game(1, en=Language(1, [TopReview("meh", 1)]))
    game.merge(_game(2, en=Language(2, [TopReview("great", 8)])))
    assert game.reviews == 1 + 2
    assert game.languages["en"].review_count == 1 + 2
    assert game.languages["en"].top_reviews == [TopReview("great", 8)]


def test_game_merge_tie_prefers_later_review():
    game = _game(1, en=Language(1, [TopReview("a", 5)]))
    game.merge(_game(1, en=Language(1, [TopReview("b", 5)])))
    assert game.languages["en"].top_reviews == [TopReview("b", 5)]


def test_game_merge_copies_new_languages():
    other = _game(1, es=Language(1, [TopReview("hola", 3)]))
    game = _game(1)
    game.merge(other)
    other.languages["es"].top_reviews.append(TopReview("extra", 0))
    assert game.languages["es"].top_reviews == [TopReview("hola", 3)]


def test_top_games_orders_by_reviews_then_name():
    games = {
        "Zeta": _game(5, en=Language(5, [TopReview("z", 1)])),
        "Alpha": _game(5, en=Language(5, [TopReview("a", 1)])),
        "Beta": _game(9, en=Language(9, [TopReview("b", 1)])),
        "Gamma": _game(1, en=Language(1, [TopReview("g", 1)])),
    }
    result = top_games(games, 3)
    assert [entry["game"] for entry in result] == ["Beta", "Alpha", "Zeta"]
    assert [entry["review_count"] for entry in result] == [9, 5, 5]


def test_top_games_limits_languages_and_skips_empty():
    game = _game(
        10,
        en=Language(4, [TopReview("e", 7)]),
        es=Language(3, [TopReview("s", 2)]),
        fr=Language(2, []),
        de=Language(1, [TopReview("d", 0)]),
    )
    entry = top_games({"G": game}, 1)[0]
    assert [lang["language"] for lang in entry["languages"]] == ["en", "es"]
    assert entry["languages"][0] == {
        "language": "en",
        "review_count": 4,
        "top_review": "e",
        "top_review_votes": 7,
    }


def test_top_languages_shape_and_order():
    languages = {
        "es": Language(2, [TopReview("uno", 4)]),
        "en": Language(2, [TopReview("one", 6), TopReview("two", 1)]),
        "de": Language(1, []),
    }
    result = top_languages(languages, 2)
    assert [entry["language"] for entry in result] == ["en", "es"]
    assert result[0]["top_reviews"] == [
        {"review": "one", "votes": 6},
        {"review": "two", "votes": 1},
    ]


def test_top_languages_with_zero_count_is_empty():
    assert top_languages({"en": Language(1, [])}, 0) == []