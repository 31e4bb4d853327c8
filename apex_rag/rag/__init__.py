"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Wiki HTML extraction into labelled chunks
- Detail-link discovery on index pages
- Embedding and batched vector upserts
- Pinecone and FAISS vector stores
- Semantic retrieval and grounded answering
"""
