from greenci.analyzer.pipeline_analyzer import PipelineAnalyzer, PipelineSnapshot, PipelineSource

__all__ = ["PipelineAnalyzer", "PipelineSnapshot", "PipelineSource"]
