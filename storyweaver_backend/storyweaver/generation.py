import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from langgraph.graph import StateGraph, END
from pydantic import BaseModel

from .models import Language, MediaKind, QuizItem, Scene, Story, new_id
from .parsing import parse_json_response
from .settings import STORY_SCENE_COUNT

logger = logging.getLogger(__name__)

Composer = Callable[[str, Language, int], Awaitable[Optional[str]]]


class GenerationState(BaseModel):
    topic: str
    language: Language = Language.ENGLISH
    age: int
    raw: Optional[str] = None
    story: Optional[Story] = None
    saved: bool = False


def build_story(data: Optional[Dict[str, Any]], topic: str, language: Language,
                scene_count: int = STORY_SCENE_COUNT) -> Optional[Story]:
    """Turn parsed model output into a Story with fresh scene identities; None if unusable."""
    if not data or not isinstance(data.get("scenes"), list) or not data["scenes"]:
        logger.error("Story response has no scenes")
        return None
    raw_scenes = data["scenes"]
    if len(raw_scenes) > scene_count:
        logger.warning(f"Model returned {len(raw_scenes)} scenes, keeping the first {scene_count}")
        raw_scenes = raw_scenes[:scene_count]
    elif len(raw_scenes) < scene_count:
        logger.warning(f"Model returned {len(raw_scenes)} scenes, expected {scene_count}")
    try:
        scenes = []
        for raw in raw_scenes:
            scene = dict(raw, id=new_id(), mediaUrl=None)
            if scene.get("mediaType") not in (MediaKind.IMAGE.value, MediaKind.VIDEO.value):
                scene["mediaType"] = MediaKind.IMAGE.value
            scenes.append(Scene.model_validate(scene))
        quiz = [QuizItem.model_validate(q) for q in data.get("quiz") or []]
        notes = [str(n) for n in data["notes"]] if isinstance(data.get("notes"), list) else None
    except (ValueError, TypeError) as e:
        logger.error(f"Story response does not match the schema: {e}")
        return None
    return Story(
        title=str(data.get("title") or topic),
        scenes=scenes,
        quiz=quiz,
        notes=notes,
        language=language,
    )


def build_generation_graph(compose: Composer, save: Callable[[Story], Awaitable[bool]]):
    """compose -> structure -> persist, stopping early when a step produced nothing."""

    async def node_compose(state: GenerationState) -> Dict[str, Any]:
        logger.info(f"Composing story for topic: {state.topic[:80]}")
        return {"raw": await compose(state.topic, state.language, state.age)}

    async def node_structure(state: GenerationState) -> Dict[str, Any]:
        story = build_story(parse_json_response(state.raw), state.topic, state.language)
        if story:
            logger.info(f"Story '{story.title}' structured with {len(story.scenes)} scenes")
        return {"story": story}

    async def node_persist(state: GenerationState) -> Dict[str, Any]:
        return {"saved": await save(state.story)}

    g = StateGraph(GenerationState)
    g.add_node("compose", node_compose)
    g.add_node("structure", node_structure)
    g.add_node("persist", node_persist)
    g.set_entry_point("compose")
    g.add_conditional_edges("compose", lambda s: "structure" if s.raw else END)
    g.add_conditional_edges("structure", lambda s: "persist" if s.story else END)
    g.add_edge("persist", END)
    return g.compile()


async def run_generation(graph, topic: str, language: Language, age: int) -> Optional[Story]:
    final_state = await graph.ainvoke(GenerationState(topic=topic, language=language, age=age))
    # LangGraph returns the channel values as a dict
    if hasattr(final_state, "get"):
        return final_state.get("story")
    return final_state.story
