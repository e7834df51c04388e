"""
Tests for the session orchestrator: generation, navigation, media single-flight,
emotion-driven simplification, narration, quiz scoring and offline resume.
"""
import asyncio

from conftest import MARS_STORY, Recorder, SlowStore
from storyweaver.models import Emotion, EmotionSample, Story
from storyweaver.orchestrator import GENERATION_FAILED_MESSAGE, STORY_NOT_FOUND_MESSAGE, SessionState

CONFUSED = EmotionSample.evaluate(Emotion.CONFUSED, 0.9, 0.6)


async def start_mars(session):
    story = await session.generate("A robot exploring Mars")
    await session.wait_idle()
    return story


async def goto_quiz(session):
    for _ in session.story.scenes:
        session.next_scene()
    assert session.state is SessionState.QUIZ


async def test_empty_prompt_is_noop(session, compose):
    assert await session.generate("   ") is None
    assert session.state is SessionState.IDLE
    assert session.error is None
    assert compose.calls == []


async def test_mars_story_end_to_end(session, cache, compose):
    story = await start_mars(session)
    assert story.title == "Mars Rover Max"
    assert len(story.scenes) == 5
    assert len({s.id for s in story.scenes}) == 5
    assert len(story.quiz) == 3
    assert len(story.notes) == 5
    assert session.state is SessionState.PRESENTING
    assert session.scene_index == 0
    assert compose.calls[0][0] == "A robot exploring Mars"

    cached = await cache.list()
    assert [s.id for s in cached] == [story.id]
    # scene 0 media was acquired in the background and patched into the cache
    assert cached[0].scenes[0].media_url.startswith("data:image/png;base64,")
    assert cached[0].scenes[1].media_url is None
    assert story.scenes[0].id in session.media_cache


async def test_malformed_response_returns_to_idle_with_message(session, compose):
    compose.result = "Sorry, I could not write that story."
    assert await session.generate("A robot exploring Mars") is None
    assert session.state is SessionState.IDLE
    assert session.error == GENERATION_FAILED_MESSAGE
    assert session.story is None


async def test_response_without_scenes_fails(session, compose):
    compose.result = '{"title": "Empty", "scenes": []}'
    assert await session.generate("nothing") is None
    assert session.state is SessionState.IDLE


async def test_upstream_failure_returns_to_idle(session, compose, cache):
    compose.result = None
    assert await session.generate("A robot exploring Mars") is None
    assert session.error == GENERATION_FAILED_MESSAGE
    assert await cache.list() == []


async def test_extra_scenes_are_trimmed_to_configured_count(session, compose):
    import json
    data = dict(MARS_STORY, scenes=MARS_STORY["scenes"] + MARS_STORY["scenes"][:2])
    compose.result = json.dumps(data)
    story = await session.generate("Mars")
    assert len(story.scenes) == 5


async def test_navigation_is_clamped_and_ends_in_quiz(session, media_calls):
    await start_mars(session)
    assert session.previous_scene() is SessionState.PRESENTING
    assert session.scene_index == 0
    for expected in range(1, 5):
        session.next_scene()
        assert session.scene_index == expected
    assert session.next_scene() is SessionState.QUIZ
    assert session.current_scene is None
    assert session.previous_scene() is SessionState.PRESENTING
    assert session.scene_index == 4
    await session.wait_idle()
    # each scene fetched once, including the video scene after its video attempt failed
    assert len(media_calls["image"]) == 5
    assert len(media_calls["video"]) == 1


async def test_media_single_flight_per_scene(session, pipeline):
    release = asyncio.Event()
    calls = []

    async def slow_image(prompt, model):
        calls.append(prompt)
        await release.wait()
        return "https://replicate.delivery/slow.png"

    pipeline.generate_image = slow_image
    await session.generate("A robot exploring Mars")
    scene = session.current_scene
    assert session.request_media(scene) is None
    session.next_scene()
    session.previous_scene()
    release.set()
    await session.wait_idle()
    assert len([c for c in calls if c.startswith(MARS_STORY["scenes"][0]["imagePrompt"])]) == 1
    # resolved scenes are not fetched again
    assert session.request_media(scene) is None


async def test_unavailable_media_writes_nothing_and_retries_on_reentry(session, pipeline, cache):
    failures = Recorder(error=RuntimeError("all models down"))
    pipeline.generate_image = failures
    pipeline.generate_video = failures
    story = await start_mars(session)
    assert session.media_cache == {}
    assert (await cache.get(story.id)).scenes[0].media_url is None
    attempts = len(failures.calls)

    session.next_scene()
    session.previous_scene()
    await session.wait_idle()
    assert len(failures.calls) > attempts


async def test_simplification_replaces_current_scene_text(session, simplify):
    story = await start_mars(session)
    original = story.scenes[0].text
    assert await session.on_emotion(CONFUSED)
    assert session.state is SessionState.SIMPLIFYING
    await session.wait_idle()
    assert session.state is SessionState.PRESENTING
    assert story.scenes[0].text == "Max is a robot car on Mars."
    assert simplify.calls == [(original, story.language)]
    assert [s.id for s in story.scenes] == [s["id"] for s in session.snapshot()["story"]["scenes"]]


async def test_concurrent_triggers_issue_one_simplification(session, simplify):
    await start_mars(session)
    results = await asyncio.gather(session.on_emotion(CONFUSED), session.on_emotion(CONFUSED))
    await session.wait_idle()
    assert sorted(results) == [False, True]
    assert len(simplify.calls) == 1


async def test_simplification_targets_scene_that_triggered_it(session, simplify):
    release = asyncio.Event()

    async def slow_simplify(text, language):
        await release.wait()
        return "Short and simple."

    session.simplify = slow_simplify
    story = await start_mars(session)
    second_text = story.scenes[1].text
    assert await session.on_emotion(CONFUSED)
    session.next_scene()
    release.set()
    await session.wait_idle()
    assert story.scenes[0].text == "Short and simple."
    assert story.scenes[1].text == second_text
    assert session.scene_index == 1


async def test_short_scene_or_calm_learner_is_not_simplified(session, simplify):
    story = await start_mars(session)
    assert not await session.on_emotion(EmotionSample.evaluate(Emotion.HAPPY, 0.99, 0.6))
    assert not await session.on_emotion(EmotionSample.evaluate(Emotion.CONFUSED, 0.5, 0.6))
    story.scenes[0].text = "Max is a rover."
    assert not await session.on_emotion(CONFUSED)
    assert simplify.calls == []


async def test_no_simplification_outside_presentation(session, simplify):
    assert not await session.on_emotion(CONFUSED)
    await start_mars(session)
    await goto_quiz(session)
    assert not await session.on_emotion(CONFUSED)
    assert simplify.calls == []


async def test_quiz_answer_is_scored_once(session):
    await start_mars(session)
    await goto_quiz(session)
    progress = session.progress
    assert session.answer_quiz(0, 0) is True
    assert (progress.quizzes_passed, progress.total_points) == (1, 50)
    assert session.answer_quiz(0, 0) is None
    assert session.answer_quiz(0, 1) is None
    assert (progress.quizzes_passed, progress.total_points) == (1, 50)
    assert session.answer_quiz(1, 0) is False
    assert (progress.quizzes_passed, progress.total_points) == (1, 60)
    assert progress.literacy_score == [100, 50]
    assert len(progress.engagement_score) == 2


async def test_quiz_answers_ignored_outside_quiz_mode(session):
    await start_mars(session)
    assert session.answer_quiz(0, 0) is None
    assert session.progress.total_points == 0


async def test_finish_completes_story_and_awards_badge(session):
    await start_mars(session)
    assert not session.finish()
    await goto_quiz(session)
    for i, item in enumerate(session.story.quiz):
        correct = next(j for j, o in enumerate(item.options) if o.is_correct)
        session.answer_quiz(i, correct)
    assert session.finish()
    assert session.state is SessionState.IDLE
    assert session.progress.stories_completed == 1
    assert "Mars Rover Max Star" in session.progress.badges
    assert session.story is None


async def test_finish_without_perfect_quiz_gives_no_badge(session):
    await start_mars(session)
    await goto_quiz(session)
    session.answer_quiz(0, 1)
    assert session.finish()
    assert session.progress.stories_completed == 1
    assert session.progress.badges == set()


async def test_offline_disables_sampling_media_and_service_narration(session, synthesize, speech, media_calls):
    await start_mars(session)
    assert session.is_sampling_active()
    session.set_online(False)
    assert not session.is_sampling_active()

    images_before = len(media_calls["image"])
    session.next_scene()
    await session.wait_idle()
    assert len(media_calls["image"]) == images_before

    assert await session.play_narration()
    assert synthesize.calls == []
    assert speech.spoken == [(session.current_scene.text, "en-US")]

    session.set_online(True)
    await session.wait_idle()
    assert len(media_calls["image"]) == images_before + 1


async def test_narration_toggles_for_current_scene(session, synthesize, sink):
    await start_mars(session)
    assert await session.play_narration("josh")
    assert synthesize.calls[0][0] == session.current_scene.text
    assert synthesize.calls[0][2] == "josh"
    assert not await session.play_narration()
    assert len(synthesize.calls) == 1
    assert sink.stops == 1


async def test_resume_saved_story_uses_persisted_media(session, media_calls):
    story = await start_mars(session)
    assert session.next_scene() is SessionState.PRESENTING
    await session.wait_idle()
    session.set_online(False)
    await goto_quiz(session)
    session.finish()

    saved = await session.saved_stories()
    assert [s.title for s in saved] == ["Mars Rover Max"]
    images_before = len(media_calls["image"])
    resumed = await session.resume(story.id)
    assert resumed.id == story.id
    assert session.state is SessionState.PRESENTING
    assert session.media_cache[resumed.scenes[0].id].startswith("data:image/png")
    assert resumed.scenes[1].media_url is not None
    await session.wait_idle()
    assert len(media_calls["image"]) == images_before


async def test_resume_unknown_story_sets_error(session):
    assert await session.resume("missing") is None
    assert session.error


async def test_resume_empty_cached_story_is_rejected(session, cache):
    empty = Story(title="Empty", scenes=[])
    await cache.save(empty)
    assert await session.resume(empty.id) is None
    assert session.error == STORY_NOT_FOUND_MESSAGE
    assert session.state is SessionState.IDLE


async def test_resume_while_media_pending_keeps_single_flight(session, pipeline, cache):
    release = asyncio.Event()
    calls = []

    async def slow_image(prompt, model):
        calls.append(prompt)
        await release.wait()
        return "https://replicate.delivery/slow.png"

    pipeline.generate_image = slow_image
    story = await session.generate("A robot exploring Mars")
    await asyncio.sleep(0)
    resumed = await session.resume(story.id)
    assert resumed is not story
    release.set()
    await session.wait_idle()
    assert len([c for c in calls if c.startswith(MARS_STORY["scenes"][0]["imagePrompt"])]) == 1
    # the result lands on the resumed copy of the scene
    assert session.story.scenes[0].media_url.startswith("data:image/png")
    assert resumed.scenes[0].id in session.media_cache
    assert (await cache.get(story.id)).scenes[0].media_url.startswith("data:image/png")


async def test_media_for_overlapping_scenes_all_persisted(session, cache):
    cache.store = SlowStore()
    story = await session.generate("A robot exploring Mars")
    session.next_scene()
    await session.wait_idle()
    cached = await cache.get(story.id)
    assert cached.scenes[0].media_url.startswith("data:image/png")
    assert cached.scenes[1].media_url.startswith("data:image/png")
