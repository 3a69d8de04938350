"""
RapidPhotoFlow - photo upload and processing service

This package provides a FastAPI-based web service that accepts photo uploads
and drives each photo through an asynchronous processing pipeline. It enables:

- Multi-file image uploads stored on local disk
- Background processing runs with staged progress reporting
- An append-only event log of every lifecycle transition
- Status statistics and a full data reset

State is kept in a single JSON document. Every mutation is a full
read-modify-write of that document, serialized by a FIFO lock owned by the
document store, and written atomically through a temporary file.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - photo_manager: Upload, deletion and reset coordinator
    - processor: Processing pipeline state machine and run supervision
    - repositories: Photo and event access on top of the document store
    - storage: JSON document persistence with atomic replacement
    - locking: FIFO lock for read-modify-write critical sections
    - image_metadata: Pillow-based metadata probe with file fallback
    - models: Pydantic models for the document and API payloads
    - configuration: OmegaConf settings loading

Usage:
    Run the API server with:
        uvicorn rapid_photo_flow.main:app --reload --host 0.0.0.0 --port 3000
"""
