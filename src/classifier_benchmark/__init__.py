"""
Classifier Benchmark: resampling, benchmarking and tuning for binary classifiers.

This package runs several preprocessing + learner pipelines over the same
resampling folds, aggregates comparable metrics per pipeline, and performs
reproducible random-search hyperparameter tuning on the same primitives.

Modules:
    task:           Task, an immutable dataset bound to a binary target
    preprocessing:  Preprocessing steps and PreprocessingPipeline
    learners:       Learner variants, PipelineSpec and build_pipeline
    resampling:     KFoldCV and Holdout fold generation
    benchmark:      BenchmarkRunner and BenchmarkResult
    metrics:        Metric definitions, MetricAggregator and MetricReport
    tuning:         ParameterSpace, TuningArchive and RandomSearchTuner
    config:         BenchmarkConfig loaded from YAML and environment
    seeding:        Per-unit seed derivation
    exceptions:     Error taxonomy

Example:
    from classifier_benchmark.task import Task
    from classifier_benchmark.learners import build_pipeline, default_learners
    from classifier_benchmark.resampling import KFoldCV
    from classifier_benchmark.benchmark import BenchmarkRunner
"""

__version__ = "0.1.0"
