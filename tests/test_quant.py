import unittest

import numpy as np

from qyolo_kit.quant import QuantParams, dequantize, dequantize_array, quantize, sigmoid


class TestDequantize(unittest.TestCase):
    def test_zero_point_maps_to_zero(self) -> None:
        for zp in (-128, -3, 0, 17, 127):
            for scale in (0.0039, 0.1, 1.0, 12.5):
                self.assertEqual(dequantize(zp, zp, scale), 0.0)

    def test_affine_formula(self) -> None:
        self.assertEqual(dequantize(10, 2, 0.5), 4.0)
        self.assertEqual(dequantize(-128, -128, 0.25), 0.0)
        self.assertEqual(dequantize(-100, 28, 0.5), -64.0)

    def test_numpy_scalars_do_not_wrap(self) -> None:
        # int8 arithmetic would overflow here
        self.assertEqual(dequantize(np.int8(-128), 127, 1.0), -255.0)

    def test_array_matches_scalar(self) -> None:
        params = QuantParams(zero_point=-5, scale=0.2)
        raw = np.array([-128, -5, 0, 127], dtype=np.int8)
        out = dequantize_array(raw, params)
        self.assertEqual(out.dtype, np.float32)
        expected = [dequantize(int(v), -5, 0.2) for v in raw]
        self.assertTrue(np.allclose(out, expected))
        self.assertEqual(out[1], 0.0)

    def test_quantize_inverts_and_saturates(self) -> None:
        q = quantize([0.0, 1.0, -1.0, 100.0, -100.0], zero_point=0, scale=0.1)
        self.assertEqual(q.dtype, np.int8)
        self.assertEqual(q.tolist(), [0, 10, -10, 127, -128])

        q8 = quantize([0.0, 0.5], zero_point=128, scale=0.5, dtype=np.uint8)
        self.assertEqual(q8.tolist(), [128, 129])


class TestSigmoid(unittest.TestCase):
    def test_values(self) -> None:
        self.assertEqual(float(sigmoid(0.0)), 0.5)
        self.assertAlmostEqual(float(sigmoid(10.0)), 1.0 / (1.0 + np.exp(-10.0)), places=6)

    def test_extreme_logits_stay_in_range(self) -> None:
        out = sigmoid(np.array([-1000.0, 1000.0], dtype=np.float32))
        self.assertTrue(np.all(np.isfinite(out)))
        self.assertEqual(out[0], 0.0)
        self.assertEqual(out[1], 1.0)


if __name__ == "__main__":
    unittest.main()
