"""
Cross-validation engine.

Modules
-------
folds       Fold and cluster-fold partitioning, seed resolution.
criteria    CV criteria (cost functions) and their casewise losses.
estimator   Bias-adjusted criterion, standard error and confidence interval.
results     Immutable result types and replicate summaries.
dispatch    Sequential or worker-pool execution of per-fold work.
engine      Option resolution and fold assembly shared by the orchestrators.
replicate   Replicated runs with reproducible per-replicate seeds.
case_cv     Case-level CV of a fitted model.
mixed_cv    Cluster- and case-level CV of a mixed-effects model.
select_cv   CV of a model-selection procedure.
procedures  Stepwise and model-list selection procedures.
"""
