from feed_collector.pipeline.orchestrator import FeedPipeline, build_pipeline

__all__ = ["FeedPipeline", "build_pipeline"]
