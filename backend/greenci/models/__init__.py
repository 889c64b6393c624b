from greenci.models.project import Project  # noqa: F401
from greenci.models.pipeline_metric import PipelineMetric  # noqa: F401
from greenci.models.optimization import Optimization  # noqa: F401
from greenci.models.agent import Agent, AgentRun  # noqa: F401
