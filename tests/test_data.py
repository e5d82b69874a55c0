import numpy as np
import pandas as pd
import pytest

from nnlab.data.dataset import ImageDataset, TransactionDataset
from nnlab.data.loader import load_images, load_local_images, load_transactions
from nnlab.data.preprocessor import (
    class_counts,
    fit_max_abs,
    format_target_summary,
    images_to_unit_interval,
    normalize,
    prepare_transactions,
    split_train_test,
    summarize_targets,
)


def test_load_transactions_drops_time_and_casts(transactions_csv):
    df = load_transactions(str(transactions_csv))
    assert "Time" not in df.columns
    assert list(df.columns) == ["V1", "V2", "V3", "Amount", "Class"]
    assert df["Class"].dtype.kind == "i"
    assert df["V1"].dtype == np.float32


def test_load_transactions_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_transactions(str(tmp_path / "missing.csv"))


def test_load_transactions_missing_target(tmp_path):
    p = tmp_path / "no_target.csv"
    pd.DataFrame({"a": [1.0, 2.0]}).to_csv(p, index=False)
    with pytest.raises(KeyError):
        load_transactions(str(p))


def test_split_is_ordered(transactions_df):
    train, test = split_train_test(transactions_df, 0.8)
    assert len(train) == 160 and len(test) == 40
    assert train["Time"].iloc[-1] == 159
    assert test["Time"].iloc[0] == 160


@pytest.mark.parametrize("fraction", [0.0, 1.0, -0.5, 1.5])
def test_split_rejects_bad_fraction(transactions_df, fraction):
    with pytest.raises(ValueError):
        split_train_test(transactions_df, fraction)


def test_split_rejects_empty_side():
    with pytest.raises(ValueError):
        split_train_test(pd.DataFrame({"a": [1.0]}), 0.5)


def test_normalized_columns_have_unit_max_abs():
    x = np.array([[1.0, -4.0, 0.0], [-2.0, 2.0, 0.0], [0.5, 1.0, 0.0]], dtype=np.float32)
    scale = fit_max_abs(x)
    np.testing.assert_allclose(scale, [2.0, 4.0, 1.0])
    xn = normalize(x, scale)
    np.testing.assert_allclose(np.abs(xn).max(axis=0), [1.0, 1.0, 0.0])


def test_normalize_shape_mismatch():
    with pytest.raises(ValueError):
        normalize(np.ones((2, 3)), np.ones(2, dtype=np.float32))


def test_class_counts_and_summary():
    y = np.array([0, 1, 0, 0, 1])
    assert class_counts(y) == (3, 2)
    summary = summarize_targets(y, "Training set")
    assert summary["total"] == 5 and summary["fraud"] == 2
    assert summary["fraud_pct"] == pytest.approx(40.0)
    assert format_target_summary(summary) == "Training set: 2 fraud of 5 (40.000%)"


def test_prepare_transactions_uses_train_scale(tmp_path, transactions_df):
    df = transactions_df.drop(columns=["Time"])
    scaler_path = tmp_path / "scale.joblib"
    data = prepare_transactions(df, train_fraction=0.75, scaler_path=str(scaler_path))
    assert data.x_train.shape == (150, 4)
    assert data.x_test.shape == (50, 4)
    np.testing.assert_allclose(np.abs(data.x_train).max(axis=0), np.ones(4), rtol=1e-6)
    assert data.feature_names == ["V1", "V2", "V3", "Amount"]
    assert scaler_path.exists()


def test_images_to_unit_interval():
    out = images_to_unit_interval(np.array([[0, 255]], dtype=np.uint8))
    np.testing.assert_allclose(out, [[0.0, 1.0]])
    assert out.dtype == np.float32


def test_transaction_dataset_items():
    ds = TransactionDataset(np.ones((5, 3)), np.array([0, 1, 0, 0, 1]))
    x, y = ds[1]
    assert len(ds) == 5 and ds.n_features == 3
    assert x.shape == (3,) and y.shape == (1,)
    assert y.item() == 1.0


def test_transaction_dataset_length_mismatch():
    with pytest.raises(ValueError):
        TransactionDataset(np.ones((5, 3)), np.zeros(4))


def test_image_dataset_items(images):
    ds = ImageDataset(images, np.arange(len(images)))
    x, label = ds[3]
    assert x.shape == (1, 28, 28)
    assert 0.0 <= x.min().item() and x.max().item() <= 1.0
    assert label.item() == 3
    _, unlabeled = ImageDataset(images)[0]
    assert unlabeled.item() == -1


def test_load_local_images_roundtrip(tmp_path, images):
    p = tmp_path / "imgs.npz"
    np.savez(p, images=images[:, None], labels=np.arange(len(images)))
    loaded, labels = load_local_images(str(p))
    assert loaded.shape == (24, 28, 28)
    assert labels is not None and labels[-1] == 23


def test_load_local_images_requires_images_key(tmp_path):
    p = tmp_path / "other.npz"
    np.savez(p, pixels=np.zeros((2, 28, 28)))
    with pytest.raises(KeyError):
        load_local_images(str(p))


def test_load_images_falls_back_to_matching_split(tmp_path, images, monkeypatch):
    import nnlab.data.loader as loader

    def fail(**kwargs):
        raise RuntimeError("offline")

    monkeypatch.setattr(loader, "load_fashion_mnist", fail)
    p = tmp_path / "imgs.npz"
    np.savez(p, train_images=images[:16], train_labels=np.arange(16), test_images=images[16:])
    train_imgs, train_labels = load_images(root=str(tmp_path), train=True, local_path=str(p))
    test_imgs, test_labels = load_images(root=str(tmp_path), train=False, local_path=str(p))
    assert train_imgs.shape == (16, 28, 28)
    assert test_imgs.shape == (8, 28, 28)
    assert not np.array_equal(train_imgs[:8], test_imgs)
    np.testing.assert_array_equal(test_imgs, images[16:])
    assert train_labels[-1] == 15
    assert test_labels is None


def test_load_images_fallback_rejects_unsplit_archive(tmp_path, images, monkeypatch):
    import nnlab.data.loader as loader

    def fail(**kwargs):
        raise RuntimeError("offline")

    monkeypatch.setattr(loader, "load_fashion_mnist", fail)
    p = tmp_path / "imgs.npz"
    np.savez(p, images=images)
    with pytest.raises(KeyError):
        load_images(root=str(tmp_path), train=False, local_path=str(p))
