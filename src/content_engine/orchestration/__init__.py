"""Generation orchestration: concurrent execution, resource ceilings, quality refinement.

Independent artifact requests for one document run as coroutines on a single
event loop. The engine facade ties segmentation, the artifact cache, the LLM
gateway and the refinement loop together; failures stay in per-artifact
outcomes instead of aborting sibling work.
"""
