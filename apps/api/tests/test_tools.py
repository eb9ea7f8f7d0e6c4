import itertools

import pytest

from services.tools import dispatch_tool, generate_hashtags, get_best_time_to_post, openai_tool_declarations
from services.tools import registry
from services.tools.hashtags import FALLBACK_HASHTAGS, PLATFORM_MAX_HASHTAGS, extract_keywords
from services.tools.posting_time import DAYS_OF_WEEK, format_hour


def test_extract_keywords_strips_punctuation_and_stop_words():
    assert extract_keywords("The Future of AI, in Healthcare!") == ["future", "healthcare"]
    assert extract_keywords("work work WORK") == ["work"]


def test_hashtags_combine_topic_tone_and_platform():
    result = generate_hashtags("AI in Healthcare", "Professional", "linkedin")

    assert result["hashtags"] == ["#Healthcare", "#Leadership", "#Business", "#LinkedIn", "#Professional"]
    assert "linkedin" in result["reasoning"]


def test_hashtags_respect_twitter_limit():
    result = generate_hashtags("Remote work tips", "Casual", "twitter")

    assert result["hashtags"] == ["#Remote", "#Work", "#Tips"]


def test_hashtags_deduplicate_case_insensitively():
    result = generate_hashtags("community events", "Casual", "facebook")

    assert result["hashtags"] == ["#Community", "#Events", "#LifeStyle", "#SocialMedia"]


def test_hashtags_add_content_keywords_not_already_present():
    result = generate_hashtags(
        "growth",
        "Inspirational",
        "facebook",
        content="Mentorship changes careers. Growth follows mentorship.",
    )

    assert "#Mentorship" in result["hashtags"]
    assert len(result["hashtags"]) <= PLATFORM_MAX_HASHTAGS["facebook"]


def test_hashtags_fall_back_instead_of_raising():
    result = generate_hashtags(None, None, "linkedin")

    assert result["hashtags"] == FALLBACK_HASHTAGS


@pytest.mark.parametrize(
    "topic,tone,platform,content",
    [
        ("Leadership Leadership LEADERSHIP", "Professional", "linkedin", "leadership leadership"),
        ("Networking for B2B industry professionals", "Professional", "linkedin", None),
        ("x", "Unknown", "myspace", ""),
        ("Growth mindset goals motivation", "Inspirational", "twitter", "Growth mindset goals motivation daily"),
    ],
)
def test_hashtags_stay_within_platform_bounds(topic, tone, platform, content):
    hashtags = generate_hashtags(topic, tone, platform, content=content)["hashtags"]
    limit = PLATFORM_MAX_HASHTAGS.get(platform, PLATFORM_MAX_HASHTAGS["linkedin"])

    assert len(hashtags) <= limit
    assert len({tag.lower() for tag in hashtags}) == len(hashtags)


def test_best_time_on_linkedin_peak_day():
    result = get_best_time_to_post("linkedin", day_of_week="Tuesday")

    assert result["hour"] == 9
    assert result["confidence"] == 0.95
    assert result["day_of_week"] == "Tuesday"
    assert "Tuesday is a peak engagement day" in result["reason"]
    assert "High confidence" in result["reason"]


def test_best_time_weekend_shift_wraps_around_midnight():
    result = get_best_time_to_post("linkedin", day_of_week="Saturday")

    assert result["hour"] == 21
    assert result["confidence"] == 0.75
    assert "Weekend engagement is typically lower" in result["reason"]


def test_best_time_audience_adjustments():
    students = get_best_time_to_post("twitter", day_of_week="Sunday", target_audience="students")
    b2b = get_best_time_to_post("facebook", day_of_week="Monday", target_audience="B2B professionals")

    assert students["hour"] == 13
    assert students["confidence"] == 0.75
    assert b2b["hour"] == 13
    assert b2b["confidence"] == 0.9
    assert "B2B audience" in b2b["reason"]


def test_best_time_uses_current_day_when_not_given():
    result = get_best_time_to_post("facebook", timezone="Not/AZone")

    assert result["day_of_week"] in DAYS_OF_WEEK


def test_best_time_falls_back_on_bad_input():
    result = get_best_time_to_post("linkedin", day_of_week="Monday", target_audience=123)

    assert result["hour"] == 9
    assert result["confidence"] == 0.5


def test_best_time_bounds_for_every_combination():
    platforms = ["linkedin", "twitter", "facebook", "myspace"]
    audiences = [None, "general", "B2B professionals", "students", "aliens"]
    for platform, day, audience in itertools.product(platforms, DAYS_OF_WEEK, audiences):
        result = get_best_time_to_post(platform, day_of_week=day, target_audience=audience)
        assert 0 <= result["hour"] <= 23
        assert 0.0 <= result["confidence"] <= 1.0


def test_format_hour():
    assert format_hour(0) == "12:00 AM"
    assert format_hour(12) == "12:00 PM"
    assert format_hour(17) == "5:00 PM"


def test_dispatch_routes_known_tools():
    outcome = dispatch_tool("generateHashtags", {"topic": "Remote work", "tone": "Casual", "platform": "twitter"})

    assert outcome.ok
    assert outcome.name == "generateHashtags"
    assert len(outcome.output["hashtags"]) <= 3


def test_dispatch_reports_unknown_tool_as_error_result():
    outcome = dispatch_tool("summarize", {"text": "hi"})

    assert not outcome.ok
    assert outcome.output is None
    assert "Unknown tool" in outcome.error


def test_dispatch_wraps_tool_exceptions(monkeypatch):
    def explode(_tool_input):
        raise RuntimeError("boom")

    monkeypatch.setitem(registry._RUNNERS, "getBestTimeToPost", explode)

    outcome = dispatch_tool("getBestTimeToPost", {"platform": "linkedin"})

    assert outcome.error == "boom"
    assert outcome.input == {"platform": "linkedin"}


def test_tool_declarations_use_function_calling_format():
    declarations = openai_tool_declarations()

    assert [d["function"]["name"] for d in declarations] == ["generateHashtags", "getBestTimeToPost"]
    assert all(d["type"] == "function" for d in declarations)
    assert declarations[1]["function"]["parameters"]["required"] == ["platform"]
