from .binding import bind_definition
from .defaults import default_definition
from .loader import load_definition, parse_definition, schema_for_pipeline_definition
from .models import PipelineDefinition, StageSpec

__all__ = [
    "PipelineDefinition",
    "StageSpec",
    "bind_definition",
    "default_definition",
    "load_definition",
    "parse_definition",
    "schema_for_pipeline_definition",
]
