from datetime import datetime, timedelta

from socialgraph.feed import (
    ContentItem,
    engagement_score,
    normalize_mode,
    rank,
    window_start,
)

NOW = datetime(2024, 6, 15, 12, 0, 0)


def item(id, age, likes=0, comments=0, shares=0):
    return ContentItem(
        id=id,
        author_id=1,
        created_at=NOW - age,
        likes=likes,
        comments=comments,
        shares=shares,
    )


class TestScore:
    def test_weights(self):
        assert engagement_score(1, 0, 0) == 1
        assert engagement_score(0, 1, 0) == 2
        assert engagement_score(0, 0, 1) == 3
        assert item(1, timedelta(0), likes=2, comments=3, shares=4).score == 2 + 6 + 12


class TestModes:
    def test_unknown_and_empty_modes_read_as_latest(self):
        assert normalize_mode("") == "latest"
        assert normalize_mode(None) == "latest"
        assert normalize_mode("newest") == "latest"
        assert normalize_mode("trending") == "latest"
        assert normalize_mode(" Popular_Week ") == "popular_week"

    def test_today_starts_at_utc_midnight(self):
        assert window_start("popular_today", NOW) == datetime(2024, 6, 15)

    def test_fixed_windows(self):
        assert window_start("popular_week", NOW) == NOW - timedelta(days=7)
        assert window_start("popular_month", NOW) == NOW - timedelta(days=30)
        assert window_start("popular_year", NOW) == NOW - timedelta(days=365)
        assert window_start("popular", NOW) is None


class TestLatest:
    def test_orders_by_created_at_descending(self):
        items = [
            item(1, timedelta(hours=3), likes=100),
            item(2, timedelta(hours=1)),
            item(3, timedelta(hours=2), shares=9),
        ]
        page = rank(items, "latest", now=NOW)
        assert [i.id for i in page.items] == [2, 3, 1]
        assert page.total == 3

    def test_unknown_mode_behaves_as_latest(self):
        items = [item(1, timedelta(hours=2)), item(2, timedelta(hours=1), likes=5)]
        assert [i.id for i in rank(items, "bogus", now=NOW).items] == [2, 1]

    def test_pagination(self):
        items = [item(i, timedelta(minutes=i)) for i in range(1, 26)]
        page = rank(items, "latest", limit=10, offset=20, now=NOW)
        assert [i.id for i in page.items] == [21, 22, 23, 24, 25]
        assert page.total == 25

    def test_bad_limit_and_offset_are_clamped(self):
        items = [item(i, timedelta(minutes=i)) for i in range(1, 16)]
        page = rank(items, "latest", limit=0, offset=-5, now=NOW)
        assert page.limit == 10
        assert page.offset == 0
        assert len(page.items) == 10

    def test_offset_past_the_end(self):
        items = [item(1, timedelta(minutes=1))]
        page = rank(items, "latest", limit=10, offset=50, now=NOW)
        assert page.items == []
        assert page.total == 1


class TestPopular:
    def test_score_example(self):
        a = item(1, timedelta(hours=3), likes=5)
        b = item(2, timedelta(hours=2), comments=3)
        c = item(3, timedelta(hours=1), shares=2)
        page = rank([c, b, a], "popular", now=NOW)

        # b and c tie on 6; their relative order is the input order
        assert {i.id for i in page.items[:2]} == {2, 3}
        assert page.items[2].id == 1
        assert [i.score for i in page.items] == [6, 6, 5]

    def test_score_example_within_today(self):
        a = item(1, timedelta(hours=3), likes=5)
        b = item(2, timedelta(hours=2), comments=3)
        c = item(3, timedelta(hours=1), shares=2)
        page = rank([c, b, a], "popular_today", now=NOW)

        assert page.total == 3
        assert [i.score for i in page.items] == [6, 6, 5]
        # b and c tie on 6; newest-first input puts c ahead, not asserted here
        assert {i.id for i in page.items[:2]} == {2, 3}
        assert page.items[2].id == 1

    def test_equal_scores_keep_input_order(self):
        items = [item(i, timedelta(minutes=i), likes=1) for i in range(1, 6)]
        page = rank(items, "popular", now=NOW)
        assert [i.id for i in page.items] == [1, 2, 3, 4, 5]

    def test_week_window_filters_old_items(self):
        items = [
            item(1, timedelta(days=10), likes=50),
            item(2, timedelta(days=6), likes=1),
            item(3, timedelta(days=1), likes=3),
        ]
        page = rank(items, "popular_week", now=NOW)
        assert [i.id for i in page.items] == [3, 2]
        assert page.total == 2

    def test_today_window(self):
        items = [
            item(1, timedelta(hours=13), likes=9),   # yesterday 23:00
            item(2, timedelta(hours=11), likes=1),   # today 01:00
        ]
        page = rank(items, "popular_today", now=NOW)
        assert [i.id for i in page.items] == [2]

    def test_future_items_are_outside_the_window(self):
        items = [item(1, timedelta(hours=-1), likes=9), item(2, timedelta(hours=1))]
        page = rank(items, "popular_month", now=NOW)
        assert [i.id for i in page.items] == [2]

    def test_popular_has_no_window(self):
        items = [item(1, timedelta(days=4000), likes=9), item(2, timedelta(hours=1))]
        page = rank(items, "popular", now=NOW)
        assert [i.id for i in page.items] == [1, 2]

    def test_scores_are_non_increasing(self):
        items = [
            item(i, timedelta(days=i % 20), likes=i * 7 % 11, comments=i % 3, shares=i % 2)
            for i in range(1, 60)
        ]
        page = rank(items, "popular_month", limit=100, now=NOW)
        scores = [i.score for i in page.items]
        assert scores == sorted(scores, reverse=True)
        assert all(NOW - timedelta(days=30) <= i.created_at <= NOW for i in page.items)

    def test_rank_does_not_mutate_input(self):
        items = [item(1, timedelta(hours=2)), item(2, timedelta(hours=1), likes=3)]
        rank(items, "popular", now=NOW)
        assert [i.id for i in items] == [1, 2]
