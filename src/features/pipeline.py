"""
Modelling recipes.

A ``Recipe`` declares the outcome, the identifier and excluded columns, the
label-encoded categoricals and the ordered preprocessing steps of a model.
``build_pipeline`` turns it into a scikit-learn ``Pipeline`` ending in the
estimator, so the steps are refit inside every cross-validation fold.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from src.data_validation.data_validator import columns_by_semantic_type
from src.preprocess.preprocessing import near_zero_variance_columns

STEP_NEAR_ZERO_VARIANCE = "drop_near_zero_variance"
STEP_STANDARDIZE = "standardize"
KNOWN_STEPS = (STEP_NEAR_ZERO_VARIANCE, STEP_STANDARDIZE)


class NearZeroVarianceFilter(TransformerMixin, BaseEstimator):
    """Drops predictors that are constant or nearly so in the fitting data."""
    def __init__(self, freq_cut: float = 95 / 5, unique_cut: float = 10.0):
        self.freq_cut = freq_cut
        self.unique_cut = unique_cut

    def fit(self, X, y=None):
        X = pd.DataFrame(X)
        self.feature_names_in_ = np.asarray(X.columns, dtype=object)
        self.dropped_ = near_zero_variance_columns(X, list(X.columns), self.freq_cut, self.unique_cut)
        self.kept_ = [c for c in X.columns if c not in self.dropped_]
        return self

    def transform(self, X):
        return pd.DataFrame(X)[self.kept_]

    def get_feature_names_out(self, input_features=None):
        return np.asarray(self.kept_, dtype=object)


class StandardizeColumns(TransformerMixin, BaseEstimator):
    """Standardizes every column except ``exclude`` (label-encoded categoricals)."""
    def __init__(self, exclude: Optional[List[str]] = None):
        self.exclude = exclude

    def fit(self, X, y=None):
        X = pd.DataFrame(X)
        self.feature_names_in_ = np.asarray(X.columns, dtype=object)
        excluded = set(self.exclude or [])
        self.scaled_columns_ = [c for c in X.columns if c not in excluded]
        self.scaler_ = StandardScaler()
        if self.scaled_columns_:
            self.scaler_.fit(X[self.scaled_columns_])
        return self

    def transform(self, X):
        X_ = pd.DataFrame(X).copy()
        if self.scaled_columns_:
            X_[self.scaled_columns_] = self.scaler_.transform(X_[self.scaled_columns_])
        return X_

    def get_feature_names_out(self, input_features=None):
        return self.feature_names_in_


@dataclass
class Recipe:
    target: str
    exclude: List[str] = field(default_factory=list)
    identifiers: List[str] = field(default_factory=list)
    categorical: List[str] = field(default_factory=list)
    steps: List[str] = field(default_factory=list)
    freq_cut: float = 95 / 5
    unique_cut: float = 10.0

    def __post_init__(self):
        unknown = [s for s in self.steps if s not in KNOWN_STEPS]
        if unknown:
            raise ValueError(f"Unknown recipe steps {unknown}; expected any of {KNOWN_STEPS}.")
        if len(set(self.steps)) != len(self.steps):
            raise ValueError(f"Recipe steps must not repeat: {self.steps}")

    @classmethod
    def from_config(cls, config: Dict[str, Any], steps: Optional[List[str]] = None) -> "Recipe":
        """
        Builds the recipe from ``config['recipe']``; ``steps`` overrides the declared steps.

        Identifiers and categoricals not listed in the recipe come from the
        semantic types of the validation schema.
        """
        recipe_cfg = config.get("recipe", {})
        if "target" not in recipe_cfg:
            raise KeyError("Missing 'target' in 'recipe' config.")
        nzv_cfg = recipe_cfg.get("near_zero_variance", {})
        return cls(
            target=recipe_cfg["target"],
            exclude=list(recipe_cfg.get("exclude", [])),
            identifiers=list(recipe_cfg.get("identifiers", columns_by_semantic_type(config, "identifier"))),
            categorical=list(recipe_cfg.get("categorical", columns_by_semantic_type(config, "categorical"))),
            steps=list(steps if steps is not None else recipe_cfg.get("steps", [])),
            freq_cut=float(nzv_cfg.get("freq_cut", 95 / 5)),
            unique_cut=float(nzv_cfg.get("unique_cut", 10.0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def roles(self, df: pd.DataFrame) -> Dict[str, str]:
        """Role of every column of ``df``: outcome, identifier, excluded or predictor."""
        roles = {}
        for col in df.columns:
            if col == self.target:
                roles[col] = "outcome"
            elif col in self.identifiers:
                roles[col] = "identifier"
            elif col in self.exclude:
                roles[col] = "excluded"
            else:
                roles[col] = "predictor"
        return roles

    def predictors(self, df: pd.DataFrame) -> List[str]:
        return [col for col, role in self.roles(df).items() if role == "predictor"]

    def prepare(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, pd.Series]:
        """Splits ``df`` into predictors and outcome; categoricals become their integer codes."""
        if self.target not in df.columns:
            raise KeyError(f"Target column '{self.target}' not found.")
        predictors = self.predictors(df)
        if not predictors:
            raise ValueError("Recipe leaves no predictor columns.")
        X = df[predictors].copy()
        for col in predictors:
            if col in self.categorical or isinstance(X[col].dtype, pd.CategoricalDtype):
                X[col] = X[col].astype("category").cat.codes.astype("int64")
            elif not pd.api.types.is_numeric_dtype(X[col]):
                raise ValueError(f"Predictor '{col}' is neither numeric nor declared categorical.")
        y = df[self.target].astype(float)
        return X, y


def build_pipeline(recipe: Recipe, estimator: Any) -> Pipeline:
    """Pipeline of the recipe's steps, in declared order, followed by ``estimator``."""
    pipeline_steps = []
    for step in recipe.steps:
        if step == STEP_NEAR_ZERO_VARIANCE:
            pipeline_steps.append(("nzv", NearZeroVarianceFilter(recipe.freq_cut, recipe.unique_cut)))
        elif step == STEP_STANDARDIZE:
            pipeline_steps.append(("standardize", StandardizeColumns(exclude=list(recipe.categorical))))
    pipeline_steps.append(("model", estimator))
    return Pipeline(pipeline_steps)
