"""
Embeddings subpackage -- text-to-vector encoding.

    EmbeddingEncoder -- tokenize -> infer -> pool -> normalise facade
    BatchTokenizer   -- padded id/mask matrices from a HuggingFace tokenizer
    pooling          -- masked mean pooling and L2 normalisation
"""

from embedder.embeddings.encoder import EmbeddingEncoder
from embedder.embeddings.tokenizer import BatchTokenizer, HFTokenizer, TokenizedBatch
