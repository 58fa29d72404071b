from .vitals_publisher import ExerciseContext, PublisherConfig, VitalsPublisher

__all__ = ["ExerciseContext", "PublisherConfig", "VitalsPublisher"]
