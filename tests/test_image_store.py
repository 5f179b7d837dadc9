"""Tests for atelier/agent/image_store.py

Covers reference normalization, the alias index and lookup fallbacks.
"""

import pytest

from atelier.agent.image_store import (
    DATA_HASH_PREFIX_CHARS,
    ImageKind,
    ImageStore,
    normalize_ref,
    reference_variations,
    short_hash,
    split_data_uri,
)

from tests.helpers import data_uri


# ========== Normalization ==========

class TestNormalizeRef:
    def test_asset_path_gives_id(self):
        assert normalize_ref("/api/chat/assets/gen_ab12cd34.png") == "gen_ab12cd34"

    def test_full_asset_url_gives_id(self):
        assert normalize_ref("https://cdn.example.com/api/chat/assets/img_1f2e3d4c") == "img_1f2e3d4c"

    def test_file_name_gives_stem(self):
        assert normalize_ref("https://example.com/photos/look_01.JPG") == "look_01"
        assert normalize_ref("dress.webp") == "dress"

    def test_unknown_extension_left_alone(self):
        assert normalize_ref("notes.txt") == "notes.txt"

    def test_data_uri_hashes_prefix(self, png_uri):
        normalized = normalize_ref(png_uri)
        assert normalized == f"data_{short_hash(png_uri[:DATA_HASH_PREFIX_CHARS])}"

    def test_plain_id_unchanged(self):
        assert normalize_ref("image_2") == "image_2"

    def test_first_rule_wins(self):
        # Asset path beats file name: the id is taken without its extension.
        assert normalize_ref("/api/chat/assets/gen_x.png") == "gen_x"


class TestShortHash:
    def test_deterministic(self):
        assert short_hash("data:image/png;base64,AAAA") == short_hash("data:image/png;base64,AAAA")

    def test_base36_alphabet(self):
        value = short_hash("data:image/jpeg;base64,/9j/4AAQSkZJRg")
        assert value and all(c in "0123456789abcdefghijklmnopqrstuvwxyz" for c in value)

    def test_empty_string(self):
        assert short_hash("") == "0"

    def test_known_value(self):
        # "a" → 97, "ab" → 97 * 31 + 98 = 3105
        assert short_hash("a") == "2p"
        assert short_hash("ab") == "2e9"

    def test_wraps_to_signed_32_bits(self):
        # Long inputs overflow; the result is still a non-negative base36 number.
        value = short_hash("z" * 500)
        assert int(value, 36) <= 2 ** 31

    def test_shared_prefix_collides(self):
        prefix = "data:image/png;base64," + "A" * 200
        assert normalize_ref(prefix + "first") == normalize_ref(prefix + "second")


class TestVariations:
    def test_numeric(self):
        assert reference_variations("7")[0] == "image_7"

    def test_gen_prefix_removed(self):
        assert "x1" in reference_variations("gen_x1")

    def test_gen_prefix_added(self):
        assert "gen_x1" in reference_variations("x1")

    def test_img_prefix_removed(self):
        assert "abc" in reference_variations("img_abc")

    def test_upload_alias_to_number(self):
        assert reference_variations("image_7")[0] == "7"
        assert "7" not in reference_variations("image_7b")


class TestSplitDataUri:
    def test_base64(self):
        assert split_data_uri("data:image/webp;base64,QUJD") == ("image/webp", "QUJD")

    def test_not_a_data_uri(self):
        with pytest.raises(ValueError):
            split_data_uri("https://example.com/a.png")


# ========== Store ==========

@pytest.fixture
def store(png_uri):
    store = ImageStore()
    store.register(png_uri, ImageKind.UPLOADED, id="img_aaaa1111", aliases=["image_1"])
    store.register(
        "/api/chat/assets/gen_bbbb2222.png",
        ImageKind.GENERATED,
        id="gen_bbbb2222",
        aliases=["/api/chat/assets/gen_bbbb2222.png"],
    )
    return store


class TestImageStore:
    def test_resolve_by_id(self, store):
        assert store.resolve("img_aaaa1111").id == "img_aaaa1111"

    def test_resolve_by_alias(self, store):
        assert store.resolve("image_1").id == "img_aaaa1111"

    def test_bare_number_matches_upload_alias(self, store):
        assert store.resolve("7") is None
        assert store.resolve("1").id == store.resolve("image_1").id

    def test_upload_alias_matches_bare_number(self, store):
        store.register(data_uri(b"seven"), ImageKind.REFERENCE, id="img_x", aliases=["7"])
        assert store.resolve("image_7").id == "img_x"
        assert store.resolve("7").id == "img_x"

    def test_data_uri_indexed_without_alias(self, store, png_uri):
        assert png_uri not in store.get("img_aaaa1111").aliases
        assert store.resolve(png_uri).id == "img_aaaa1111"

    def test_resolve_asset_url(self, store):
        image = store.resolve("https://host/api/chat/assets/gen_bbbb2222.png")
        assert image.id == "gen_bbbb2222"

    def test_resolve_without_gen_prefix(self, store):
        assert store.resolve("bbbb2222").id == "gen_bbbb2222"

    def test_resolve_with_extra_img_prefix(self, store):
        store.register(data_uri(b"x"), ImageKind.REFERENCE, id="look_3")
        assert store.resolve("img_look_3").id == "look_3"

    def test_img_prefix_is_not_added(self, store):
        # Only gen_ is tried in both directions.
        assert store.resolve("aaaa1111") is None

    def test_resolve_data_uri(self, store, png_uri):
        assert store.resolve(png_uri).id == "img_aaaa1111"

    def test_resolve_strips_whitespace(self, store):
        assert store.resolve("  image_1 ").id == "img_aaaa1111"

    def test_unknown_and_empty(self, store):
        assert store.resolve("image_9") is None
        assert store.resolve("") is None
        assert store.resolve(None) is None

    def test_equivalent_refs_same_payload(self, store, png_uri):
        payloads = {store.get_payload(ref) for ref in ("img_aaaa1111", "image_1", "1", png_uri)}
        assert payloads == {png_uri}

    def test_register_existing_id_merges_aliases(self, store, png_uri):
        returned = store.register("other-payload", ImageKind.REFERENCE, id="img_aaaa1111", aliases=["hero"])
        image = store.get("img_aaaa1111")
        assert returned == "img_aaaa1111"
        assert image.payload == png_uri
        assert image.kind == ImageKind.UPLOADED
        assert "hero" in image.aliases and "image_1" in image.aliases
        assert store.resolve("hero").id == "img_aaaa1111"
        assert len(store) == 2

    def test_register_is_idempotent(self, store, png_uri):
        store.register(png_uri, ImageKind.UPLOADED, id="img_aaaa1111", aliases=["image_1"])
        assert store.get("img_aaaa1111").aliases.count("image_1") == 1
        assert len(store) == 2

    def test_register_mints_id(self):
        store = ImageStore()
        image_id = store.register(data_uri(), ImageKind.UPLOADED)
        assert image_id.startswith("img_") and len(image_id) == 12

    def test_contains(self, store):
        assert "image_1" in store
        assert "image_5" not in store

    def test_image_context(self, store, png_uri):
        context = store.image_context()
        assert context["img_aaaa1111"] == png_uri
        assert context["image_1"] == png_uri
        assert context["gen_bbbb2222"] == "/api/chat/assets/gen_bbbb2222.png"

    def test_mime_type(self, store):
        assert store.get("img_aaaa1111").mime_type == "image/png"
        assert store.get("gen_bbbb2222").mime_type == "image/png"

    def test_registry_prompt(self, store):
        prompt = store.registry_prompt()
        assert prompt.startswith("## Available Images")
        assert "- img_aaaa1111 [uploaded] (also: image_1)" in prompt
        assert "- gen_bbbb2222 [generated]" in prompt
        assert "/api/chat/assets" not in prompt

    def test_registry_prompt_empty(self):
        assert "No images" in ImageStore().registry_prompt()
