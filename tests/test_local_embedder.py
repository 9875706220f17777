# =============================================================================
# Unit Tests — Rolling Hash & Local Embedding
# =============================================================================

import math

from research_rag.services.hashing import hash_key, hash_to_unit_float, rolling_hash
from research_rag.services.local_embedder import LocalEmbedder, local_embedding

from conftest import run


class TestRollingHash:

    def test_empty_string_hashes_to_zero(self):
        assert rolling_hash("") == 0

    def test_known_values(self):
        assert rolling_hash("a") == 97
        assert rolling_hash("ab") == 97 * 31 + 98

    def test_wraps_to_signed_32_bit(self):
        value = rolling_hash("a fairly long string that overflows 32 bits many times")
        assert -(2**31) <= value <= 2**31 - 1

    def test_astral_characters_count_as_two_code_units(self):
        # U+1F600 is the surrogate pair D83D DE00
        assert rolling_hash("\U0001F600") == 0xD83D * 31 + 0xDE00

    def test_unit_float_in_range(self):
        for text in ("alpha", "beta", "gamma", ""):
            assert 0.0 <= hash_to_unit_float(text) <= 1.0

    def test_hash_key_is_non_negative_string(self):
        key = hash_key("some prompt")
        assert key.isdigit()


class TestLocalEmbedding:

    def test_dimensions_and_unit_length(self):
        vector = local_embedding("Revenue rose sharply. Costs fell.")
        assert len(vector) == 768
        assert math.isclose(math.sqrt(sum(v * v for v in vector)), 1.0, rel_tol=1e-9)

    def test_deterministic(self):
        text = "The study's methodology and results are summarised below."
        assert local_embedding(text) == local_embedding(text)

    def test_empty_text_still_unit_length(self):
        vector = local_embedding("")
        assert len(vector) == 768
        assert math.isclose(math.sqrt(sum(v * v for v in vector)), 1.0, rel_tol=1e-9)

    def test_different_texts_differ(self):
        assert local_embedding("stock market outlook") != local_embedding("protein folding study")

    def test_structural_flags(self):
        vector = local_embedding("Is 42 the answer? - yes")
        assert vector[700] > 0  # digit
        assert vector[701] > 0  # uppercase
        assert vector[702] > 0  # bullet / dash
        assert vector[703] > 0  # question mark

    def test_financial_category_slot(self):
        vector = local_embedding("investment profit revenue market")
        assert vector[500] > 0
        assert vector[580] == 0  # academic

    def test_custom_dimensions(self):
        assert len(local_embedding("short text", dimensions=1024)) == 1024

    def test_embedder_wrapper(self):
        embedder = LocalEmbedder()
        assert embedder.name == "local"
        assert run(embedder.embed("hello world")) == local_embedding("hello world")
