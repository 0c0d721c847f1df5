"""Tests for GenerativeAnalyzer — LLM output handling, re-pricing and cross-checks.

No network access: ``_call_llm`` is patched on the instance.
"""
import json
from unittest.mock import MagicMock, patch

import pytest

from backend.services.script.analyzer import ScriptAnalyzer
from backend.services.script.cache import AnalysisCache
from backend.services.script.generative_analyzer import GenerativeAnalyzer
from backend.services.video.model_router import ModelRouter

SCRIPT = "Scene 1: Hook line here. Scene 2: Demo of the product. Scene 3: Sign up now."


def _make_scene(number: int, provider: str = "sora", duration=7, **overrides) -> dict:
    scene = {
        "sceneNumber": number,
        "label": f"Scene {number}",
        "scriptExcerpt": f"Excerpt for scene {number}",
        "estimatedDuration": duration,
        "recommendedProvider": provider,
        "visualDirection": f"Direction {number}",
        "creativeFeedback": f"Feedback {number}",
        "strengthRating": "adequate",
        "hasDialogue": False,
        "hasBRoll": True,
    }
    scene.update(overrides)
    return scene


def _make_payload(scenes=None, rewrites=None) -> str:
    return json.dumps({
        "scenes": scenes if scenes is not None else [_make_scene(n) for n in (1, 2, 3)],
        "overallFeedback": "Tight script with a clear hook.",
        "narrativeArc": "hook → demo → CTA",
        "suggestedRewrites": rewrites or [],
    })


@pytest.fixture
def baseline(registry):
    return ScriptAnalyzer(ModelRouter(registry))


@pytest.fixture
def generative(baseline):
    return GenerativeAnalyzer(baseline, AnalysisCache(), api_key="test-key")


class TestConfiguration:
    def test_no_credential_returns_none(self, baseline, no_provider_env):
        gen = GenerativeAnalyzer(baseline, AnalysisCache())
        with patch.object(gen, "_call_llm") as llm:
            assert gen.enrich(SCRIPT) is None
        llm.assert_not_called()

    def test_env_key_used(self, baseline, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")
        gen = GenerativeAnalyzer(baseline, AnalysisCache())
        assert gen.is_configured()
        assert gen.api_key == "env-key"

    def test_openai_provider_reads_openai_key(self, baseline, no_provider_env, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "oa-key")
        gen = GenerativeAnalyzer(baseline, AnalysisCache(), llm_provider="openai")
        assert gen.api_key == "oa-key"
        assert gen.model == "gpt-4o"

    def test_unsupported_provider_rejected(self, baseline):
        with pytest.raises(ValueError):
            GenerativeAnalyzer(baseline, AnalysisCache(), llm_provider="llama")

    def test_from_config(self, baseline, sample_settings):
        from backend.services.shared.config import Config
        gen = GenerativeAnalyzer.from_config(baseline, AnalysisCache(), Config(str(sample_settings)))
        assert gen.llm_provider == "anthropic"
        assert gen.max_tokens == 1024
        assert gen.timeout == 30


class TestPrompt:
    def test_prompt_mentions_context(self, generative):
        prompt = generative.build_prompt(SCRIPT, "youtube", ["heygen", "sora"], 5.0)
        assert "youtube" in prompt
        assert "heygen, sora" in prompt
        assert "$5.00" in prompt
        assert SCRIPT in prompt

    def test_prompt_without_providers_or_budget(self, generative):
        prompt = generative.build_prompt(SCRIPT, "general", [], None)
        assert "template (free only)" in prompt
        assert "unlimited" in prompt

    def test_script_truncated(self, baseline):
        gen = GenerativeAnalyzer(baseline, AnalysisCache(), api_key="k", script_char_limit=10)
        prompt = gen.build_prompt("A" * 50, "general", [], None)
        assert "A" * 10 in prompt
        assert "A" * 11 not in prompt


class TestEnrich:
    def test_valid_payload(self, generative):
        with patch.object(generative, "_call_llm", return_value=_make_payload()):
            analysis = generative.enrich(SCRIPT, "general", ["sora"])
        assert analysis.generated
        assert len(analysis.scenes) == 3
        first = analysis.scenes[0]
        assert (first.provider, first.model, first.duration, first.cost) == ("sora", "sora-2", 8, 0.8)
        assert first.visual_direction == "Direction 1"
        assert first.strength_rating == "adequate"
        assert first.creative_feedback == "Feedback 1"
        assert analysis.overall_feedback == "Tight script with a clear hook."
        assert analysis.narrative_arc == "hook → demo → CTA"

    def test_payload_wrapped_in_prose(self, generative):
        raw = f"Here is the analysis:\n{_make_payload()}\nLet me know!"
        with patch.object(generative, "_call_llm", return_value=raw):
            assert generative.enrich(SCRIPT, "general", ["sora"]) is not None

    def test_provider_name_normalised(self, generative):
        scenes = [_make_scene(n, provider="  Sora ") for n in (1, 2, 3)]
        with patch.object(generative, "_call_llm", return_value=_make_payload(scenes)):
            analysis = generative.enrich(SCRIPT, "general", ["sora"])
        assert all(s.provider == "sora" for s in analysis.scenes)

    def test_unconnected_provider_becomes_template(self, generative):
        scenes = [_make_scene(n, provider="heygen") for n in (1, 2, 3)]
        with patch.object(generative, "_call_llm", return_value=_make_payload(scenes)):
            analysis = generative.enrich(SCRIPT, "general", ["sora"])
        assert all(s.provider == "template" for s in analysis.scenes)
        assert analysis.total_cost == 0.0

    def test_long_sora_scene_uses_pro_model(self, generative):
        scenes = [_make_scene(1, duration=20), _make_scene(2), _make_scene(3)]
        with patch.object(generative, "_call_llm", return_value=_make_payload(scenes)):
            analysis = generative.enrich(SCRIPT, "youtube", ["sora"])
        first = analysis.scenes[0]
        assert (first.model, first.duration, first.cost) == ("sora-2-pro", 15, 4.5)

    def test_budget_enforced_in_order(self, generative):
        with patch.object(generative, "_call_llm", return_value=_make_payload()):
            analysis = generative.enrich(SCRIPT, "general", ["sora"], remaining_budget=1.0)
        assert [s.provider for s in analysis.scenes] == ["sora", "template", "template"]
        assert analysis.total_cost == 0.8
        assert any("2 scene(s) fell back" in w for w in analysis.warnings)

    def test_rewrites_beyond_scene_count_dropped(self, generative):
        rewrites = [
            {"sceneNumber": 2, "original": "a", "rewrite": "b", "reason": "c"},
            {"sceneNumber": 7, "original": "a", "rewrite": "b", "reason": "c"},
        ]
        with patch.object(generative, "_call_llm", return_value=_make_payload(rewrites=rewrites)):
            analysis = generative.enrich(SCRIPT, "general", ["sora"])
        assert [r.scene_number for r in analysis.suggested_rewrites] == [2]


class TestFailureHandling:
    def test_llm_exception_returns_none(self, generative):
        with patch.object(generative, "_call_llm", side_effect=RuntimeError("503")):
            assert generative.enrich(SCRIPT) is None

    def test_malformed_json_repaired(self, generative):
        with patch.object(generative, "_call_llm", side_effect=["{not json", _make_payload()]) as llm:
            analysis = generative.enrich(SCRIPT, "general", ["sora"])
        assert analysis is not None
        assert llm.call_count == 2
        assert "malformed" in llm.call_args_list[1][0][0]

    def test_unrepairable_json_returns_none(self, generative):
        with patch.object(generative, "_call_llm", side_effect=["{not json", "still not json"]):
            assert generative.enrich(SCRIPT) is None

    def test_schema_violation_returns_none(self, generative):
        scenes = [_make_scene(1, strengthRating="great")]
        with patch.object(generative, "_call_llm", return_value=_make_payload(scenes)):
            assert generative.enrich(SCRIPT) is None

    def test_out_of_range_duration_rejected(self, generative):
        scenes = [_make_scene(1, duration=90)]
        with patch.object(generative, "_call_llm", return_value=_make_payload(scenes)):
            assert generative.enrich(SCRIPT) is None

    def test_too_many_scenes_rejected(self, generative):
        scenes = [_make_scene(n if n <= 8 else 8) for n in range(1, 10)]
        with patch.object(generative, "_call_llm", return_value=_make_payload(scenes)):
            assert generative.enrich(SCRIPT) is None

    def test_string_boolean_rejected(self, generative):
        scenes = [_make_scene(1, hasDialogue="false")]
        with patch.object(generative, "_call_llm", return_value=_make_payload(scenes)):
            assert generative.enrich(SCRIPT) is None


class TestCaching:
    def test_second_call_served_from_cache(self, generative):
        with patch.object(generative, "_call_llm", return_value=_make_payload()) as llm:
            first = generative.enrich(SCRIPT, "general", ["sora"])
            second = generative.enrich(SCRIPT, "general", ["sora"])
        assert first is not second
        assert first.to_dict() == second.to_dict()
        llm.assert_called_once()

    def test_budget_not_part_of_key(self, generative):
        with patch.object(generative, "_call_llm", return_value=_make_payload()) as llm:
            generative.enrich(SCRIPT, "general", ["sora"], remaining_budget=1.0)
            generative.enrich(SCRIPT, "general", ["sora"], remaining_budget=50.0)
        llm.assert_called_once()

    def test_cached_payload_repriced_for_smaller_budget(self, generative):
        with patch.object(generative, "_call_llm", return_value=_make_payload()) as llm:
            rich = generative.enrich(SCRIPT, "general", ["sora"], remaining_budget=50.0)
            broke = generative.enrich(SCRIPT, "general", ["sora"], remaining_budget=0.0)
        llm.assert_called_once()
        assert rich.total_cost == 2.4
        assert broke.total_cost == 0.0
        assert all(s.provider == "template" for s in broke.scenes)
        assert any("3 scene(s) fell back" in w for w in broke.warnings)

    def test_cached_payload_repriced_for_larger_budget(self, generative):
        with patch.object(generative, "_call_llm", return_value=_make_payload()):
            generative.enrich(SCRIPT, "general", ["sora"], remaining_budget=1.0)
            later = generative.enrich(SCRIPT, "general", ["sora"])
        assert [s.provider for s in later.scenes] == ["sora", "sora", "sora"]

    def test_caller_mutation_does_not_leak(self, generative):
        with patch.object(generative, "_call_llm", return_value=_make_payload()):
            first = generative.enrich(SCRIPT, "general", ["sora"])
            first.warnings.append("edited")
            first.scenes.clear()
            second = generative.enrich(SCRIPT, "general", ["sora"])
        assert len(second.scenes) == 3
        assert "edited" not in second.warnings

    def test_failures_not_cached(self, generative):
        with patch.object(generative, "_call_llm", side_effect=[RuntimeError("down"), _make_payload()]):
            assert generative.enrich(SCRIPT, "general", ["sora"]) is None
            assert generative.enrich(SCRIPT, "general", ["sora"]) is not None


class TestCrossCheck:
    def test_small_divergence_keeps_generated_structure(self, generative):
        scenes = [_make_scene(n) for n in (1, 2, 3, 4, 5)]
        with patch.object(generative, "_call_llm", return_value=_make_payload(scenes)):
            analysis = generative.enrich(SCRIPT, "general", ["sora"])
        assert len(analysis.scenes) == 5

    def test_large_divergence_uses_deterministic_scenes(self, generative):
        scenes = [_make_scene(n) for n in range(1, 9)]
        with patch.object(generative, "_call_llm", return_value=_make_payload(scenes)):
            analysis = generative.enrich(SCRIPT, "general", ["sora"])
        assert len(analysis.scenes) == 3
        assert analysis.scenes[0].text == "Hook line here."
        assert analysis.scenes[0].creative_feedback == "Feedback 1"
        assert analysis.scenes[2].visual_direction == "Direction 3"
        assert analysis.overall_feedback == "Tight script with a clear hook."
        assert analysis.generated
        assert any("split the script differently" in w for w in analysis.warnings)


class TestLLMClients:
    def test_anthropic_text_blocks_joined(self, generative):
        text_block = MagicMock(type="text", text='{"a": 1}')
        other_block = MagicMock(type="tool_use")
        client = MagicMock()
        client.messages.create.return_value = MagicMock(content=[text_block, other_block])
        with patch("anthropic.Anthropic", return_value=client) as ctor:
            assert generative._call_llm("prompt") == '{"a": 1}'
        ctor.assert_called_once_with(api_key="test-key", timeout=60.0)
        assert client.messages.create.call_args.kwargs["max_tokens"] == 2048

    def test_openai_message_content(self, baseline):
        gen = GenerativeAnalyzer(baseline, AnalysisCache(), api_key="k", llm_provider="openai")
        client = MagicMock()
        client.chat.completions.create.return_value = MagicMock(
            choices=[MagicMock(message=MagicMock(content="hello"))],
        )
        with patch("openai.OpenAI", return_value=client):
            assert gen._call_llm("prompt") == "hello"
