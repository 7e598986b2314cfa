"""
Conduit - HTTP Layer

FastAPI/uvicorn plumbing used by ServiceLifecycle: the request pipeline, its
middleware, the embedded listener and the response envelope helper.
"""
