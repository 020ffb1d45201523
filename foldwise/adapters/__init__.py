"""
Model adapters — the only place where model-family specifics live.

Modules
-------
base                  The adapter protocols, ``PredictMode``, response
                      validation and formula checking.
statsmodels_adapters  ``FormulaAdapter`` (OLS / Logit / GLM) and
                      ``MixedLMAdapter`` (linear mixed models).
"""
