import json

from chatdesk.agents.prompts import BUILTIN_BUNDLE, FALLBACK_SYSTEM_PROMPT, PromptBundleStore


def test_builtin_bundle_without_directory():
    store = PromptBundleStore()

    assert store.versions() == ["v1"]
    assert store.get() is BUILTIN_BUNDLE
    assert store.get("v9") is BUILTIN_BUNDLE


def test_loads_only_approved_versions(tmp_path):
    (tmp_path / "system_v2.md").write_text("You are the v2 agent.\n")
    (tmp_path / "developer_v2.md").write_text("Follow the v2 rules.")
    (tmp_path / "system_v3.md").write_text("Draft prompt.")
    (tmp_path / "versions.json").write_text(
        json.dumps(
            {
                "default": "v2",
                "versions": {
                    "v2": {
                        "approved": True,
                        "system": "system_v2.md",
                        "developer": "developer_v2.md",
                        "brand_tone": "missing.md",
                    },
                    "v3": {"approved": False, "system": "system_v3.md"},
                },
            }
        )
    )

    store = PromptBundleStore(tmp_path)

    assert store.versions() == ["v2"]
    assert store.default_version == "v2"
    bundle = store.get()
    assert bundle.system == "You are the v2 agent."
    assert bundle.developer == "Follow the v2 rules."
    assert bundle.brand_tone == ""
    assert store.get("v3").version == "v2"


def test_missing_manifest_uses_builtin(tmp_path):
    assert PromptBundleStore(tmp_path).get() is BUILTIN_BUNDLE


def test_unknown_default_falls_back_to_generic_prompt(tmp_path):
    (tmp_path / "versions.json").write_text(json.dumps({"default": "v5", "versions": {}}))

    bundle = PromptBundleStore(tmp_path).get()

    assert bundle.system == FALLBACK_SYSTEM_PROMPT
