"""
Generalized additive model as a scikit-learn regressor.

Wraps statsmodels' ``GLMGam``: one penalized B-spline smooth per numeric
predictor plus unpenalized linear terms (and an intercept). Being a regular
estimator, it runs inside the same recipe pipelines and ``GridSearchCV``
loops as the other models.
"""
import logging
from typing import List, Optional

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, RegressorMixin
from statsmodels.gam.api import BSplines, GLMGam

logger = logging.getLogger(__name__)


class GamRegressor(RegressorMixin, BaseEstimator):
    """
    Gaussian additive model with ``smooth_df`` degrees of freedom per smooth term.

    Each smooth term is a B-spline basis of the given ``degree`` without its
    intercept column, so it contributes exactly ``smooth_df`` coefficients.
    The curvature penalty of term j is ``penalty_multiplier * n / trace(S_j)``
    where ``S_j`` is the term's second-derivative penalty matrix. A multiplier
    of 0 leaves each smooth at its full ``smooth_df``; around 1 and above the
    terms are close to linear (effective df near 1).
    """

    def __init__(self, linear_terms: Optional[List[str]] = None, smooth_df: int = 2,
                 degree: int = 2, penalty_multiplier: float = 1.0):
        self.linear_terms = linear_terms
        self.smooth_df = smooth_df
        self.degree = degree
        self.penalty_multiplier = penalty_multiplier

    def _split_columns(self, X: pd.DataFrame):
        wanted = set(self.linear_terms or [])
        linear = [c for c in X.columns if c in wanted]
        smooth = [c for c in X.columns if c not in wanted]
        return linear, smooth

    def _linear_exog(self, X: pd.DataFrame) -> pd.DataFrame:
        exog = X[self.linear_columns_].astype(float)
        exog.insert(0, "const", 1.0)
        return exog

    def _smooth_exog(self, X: pd.DataFrame) -> np.ndarray:
        values = X[self.smooth_columns_].astype(float)
        # B-spline bases are only defined between the outer knots set at fit time
        return values.clip(lower=self.lower_bounds_, upper=self.upper_bounds_, axis=1).to_numpy()

    def fit(self, X, y):
        X = pd.DataFrame(X).reset_index(drop=True)
        y = np.asarray(y, dtype=float)
        self.feature_names_in_ = np.asarray(X.columns, dtype=object)
        self.n_features_in_ = X.shape[1]
        self.linear_columns_, self.smooth_columns_ = self._split_columns(X)
        if not self.smooth_columns_:
            raise ValueError("GamRegressor needs at least one column for smooth terms.")

        self.lower_bounds_ = X[self.smooth_columns_].min()
        self.upper_bounds_ = X[self.smooth_columns_].max()

        k = len(self.smooth_columns_)
        smoother = BSplines(
            X[self.smooth_columns_].astype(float).to_numpy(),
            df=[self.smooth_df + 1] * k,
            degree=[self.degree] * k,
            variable_names=list(self.smooth_columns_),
        )
        n = len(y)
        alpha = []
        for term in smoother.smoothers:
            trace = float(np.trace(term.cov_der2))
            alpha.append(self.penalty_multiplier * n / trace if trace > 0 else self.penalty_multiplier)

        gam = GLMGam(y, exog=self._linear_exog(X), smoother=smoother, alpha=alpha)
        self.results_ = gam.fit()
        if not getattr(self.results_, "converged", True):
            raise RuntimeError(f"GAM fit did not converge (penalty_multiplier={self.penalty_multiplier}).")
        logger.debug(
            f"GAM fitted: {k} smooth terms, linear terms {self.linear_columns_}, "
            f"penalty_multiplier={self.penalty_multiplier}"
        )
        return self

    def predict(self, X):
        X = pd.DataFrame(X).reset_index(drop=True)
        pred = self.results_.predict(exog=self._linear_exog(X).to_numpy(), exog_smooth=self._smooth_exog(X))
        return np.asarray(pred, dtype=float)

    def smooth_effective_df(self) -> pd.Series:
        """Effective degrees of freedom of each smooth term after penalization."""
        edf = np.asarray(self.results_.edf)
        offset = len(self.linear_columns_) + 1
        smoother = self.results_.model.smoother
        return pd.Series({
            col: float(edf[offset + np.flatnonzero(smoother.mask[i])].sum())
            for i, col in enumerate(self.smooth_columns_)
        })

    def term_importance(self, X) -> pd.Series:
        """
        Spread of each term's contribution over ``X``: max minus min of the
        partial effect for smooth terms, |coef| times the column range for
        linear terms.
        """
        X = pd.DataFrame(X).reset_index(drop=True)
        importance = {}
        exog_smooth = self.results_.model.smoother.transform(self._smooth_exog(X))
        params = np.asarray(self.results_.params)
        for i, col in enumerate(self.smooth_columns_):
            mask = self.results_.model.smoother.mask[i]
            col_index = np.flatnonzero(mask)
            partial = exog_smooth[:, col_index] @ params[len(self.linear_columns_) + 1 + col_index]
            importance[col] = float(partial.max() - partial.min())
        for j, col in enumerate(self.linear_columns_):
            col_range = float(X[col].max() - X[col].min())
            importance[col] = abs(float(params[j + 1])) * col_range
        return pd.Series(importance).sort_values(ascending=False)
