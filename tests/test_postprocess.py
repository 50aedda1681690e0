import unittest

import numpy as np

from qyolo_kit.config import QuantYoloPostConfig
from qyolo_kit.errors import ConfigurationError
from qyolo_kit.postprocess import (
    QuantYoloPostprocessor,
    decode_detections,
    filter_by_confidence,
    original_size,
    rescale_box,
)
from qyolo_kit.quant import QuantParams, quantize
from qyolo_kit.types import Candidate, DetectionSet


PARAMS = QuantParams(zero_point=0, scale=0.1)
CLASSES = ("cat", "dog", "bird")
INPUT = 64
GRIDS = (8, 4, 2)


def _blank_heads():
    heads = []
    for g in GRIDS:
        logits = np.zeros((g, g, 3, 5 + len(CLASSES)), dtype=np.float32)
        logits[..., 4] = -10.0
        heads.append(logits)
    return heads


def _q(heads):
    return [quantize(h, PARAMS.zero_point, PARAMS.scale) for h in heads]


def _decode(heads, conf=0.5, nms=0.5, scale=1.0, **kwargs):
    return decode_detections(
        *_q(heads),
        INPUT,
        INPUT,
        conf,
        nms,
        scale,
        scale,
        zero_points=[PARAMS.zero_point] * 3,
        scales=[PARAMS.scale] * 3,
        class_names=CLASSES,
        **kwargs,
    )


class TestConfidenceFilter(unittest.TestCase):
    def _cands(self):
        return [
            Candidate(0, 0, 1, 1, score=s, class_id=i % 2)
            for i, s in enumerate([0.1, 0.5, 0.49, 0.9, 0.5, 0.0])
        ]

    def test_threshold_and_order(self) -> None:
        cands = self._cands()
        out = filter_by_confidence(cands, 0.5)
        self.assertEqual([c.score for c in out], [0.5, 0.9, 0.5])
        self.assertEqual(out, [cands[1], cands[3], cands[4]])

    def test_idempotent(self) -> None:
        once = filter_by_confidence(self._cands(), 0.3)
        self.assertEqual(filter_by_confidence(once, 0.3), once)

    def test_empty(self) -> None:
        self.assertEqual(filter_by_confidence([], 0.5), [])


class TestRescale(unittest.TestCase):
    def test_divides_by_scale(self) -> None:
        box = rescale_box((100, 100, 200, 200), 2.0, 2.0, orig_size=(320, 320))
        self.assertEqual(box, (50.0, 50.0, 100.0, 100.0))

    def test_independent_axes(self) -> None:
        box = rescale_box((64, 64, 128, 96), 0.5, 0.25, orig_size=(1280, 1280))
        self.assertEqual(box, (128.0, 256.0, 256.0, 384.0))

    def test_clamps_to_frame(self) -> None:
        box = rescale_box((-20, -5, 700, 400), 1.0, 1.0, orig_size=(640, 360))
        self.assertEqual(box, (0.0, 0.0, 639.0, 359.0))

    def test_round_trip(self) -> None:
        box = (10.0, 20.0, 50.0, 60.0)
        there = rescale_box(box, 0.5, 0.25, orig_size=(1280, 2560))
        back = rescale_box(there, 2.0, 4.0, orig_size=(640, 640))
        for a, b in zip(back, box):
            self.assertAlmostEqual(a, b)

    def test_bad_scale(self) -> None:
        with self.assertRaises(ConfigurationError):
            rescale_box((0, 0, 1, 1), 0.0, 1.0, orig_size=(10, 10))

    def test_original_size(self) -> None:
        self.assertEqual(original_size((640, 640), (0.5, 2.0)), (1280, 320))


class TestDecodeDetections(unittest.TestCase):
    def test_all_zero_tensors_yield_nothing(self) -> None:
        zeros = [np.zeros((g, g, 3, 5 + len(CLASSES)), dtype=np.int8) for g in GRIDS]
        # a zero logit scores 0.5 * 0.5 = 0.25
        for conf in (0.26, 0.5, 0.9, 1.0):
            for nms in (0.0, 0.45, 1.0):
                out = decode_detections(
                    *zeros, INPUT, INPUT, conf, nms, 1.0, 1.0,
                    zero_points=[0, 0, 0], scales=[0.1, 0.1, 0.1], class_names=CLASSES,
                )
                self.assertIsInstance(out, DetectionSet)
                self.assertEqual(len(out), 0)

    def test_out_of_range_thresholds_filter_instead_of_raising(self) -> None:
        zeros = [np.zeros((g, g, 3, 5 + len(CLASSES)), dtype=np.int8) for g in GRIDS]
        for conf, nms in ((1.5, 0.45), (0.5, 1.2), (2.0, -0.5)):
            out = decode_detections(
                *zeros, INPUT, INPUT, conf, nms, 1.0, 1.0,
                zero_points=[0, 0, 0], scales=[0.1, 0.1, 0.1], class_names=CLASSES,
            )
            self.assertEqual(len(out), 0)

    def test_nms_threshold_above_one_keeps_overlaps(self) -> None:
        out = _decode(self._overlapping_pair(second_class=0), conf=0.5, nms=1.2)
        self.assertEqual([d.label for d in out], ["cat", "cat"])

    def test_single_object_maps_to_original_image(self) -> None:
        heads = _blank_heads()
        heads[0][2, 3, 1, 4] = 10.0
        heads[0][2, 3, 1, 5 + 1] = 10.0

        out = _decode(heads, scale=0.5)
        self.assertEqual(len(out), 1)
        det = out[0]
        self.assertEqual(det.label, "dog")
        self.assertEqual(det.class_id, 1)
        self.assertGreater(det.score, 0.99)
        # resized box (20, 5, 36, 35) in a 64x64 input, source image 128x128
        for got, want in zip(det.as_xyxy(), (40.0, 10.0, 72.0, 70.0)):
            self.assertAlmostEqual(got, want, places=3)

    def test_box_clamped_near_edge(self) -> None:
        heads = _blank_heads()
        # large anchor (373x326) at the corner overshoots the frame
        heads[2][0, 0, 2, 4] = 10.0
        heads[2][0, 0, 2, 5] = 10.0
        out = _decode(heads)
        self.assertEqual(len(out), 1)
        self.assertEqual(out[0].as_xyxy(), (0.0, 0.0, 63.0, 63.0))

    def _overlapping_pair(self, second_class: int):
        heads = _blank_heads()
        # neighbouring cells whose offsets put both centres at x = 32
        heads[0][2, 3, 0, 0] = 1.1
        heads[0][2, 3, 0, 4] = 10.0
        heads[0][2, 3, 0, 5 + 0] = 10.0
        heads[0][2, 4, 0, 0] = -1.1
        heads[0][2, 4, 0, 4] = 2.0
        heads[0][2, 4, 0, 5 + second_class] = 10.0
        return heads

    def test_same_class_overlap_suppressed(self) -> None:
        out = _decode(self._overlapping_pair(second_class=0), conf=0.5, nms=0.5)
        self.assertEqual(len(out), 1)
        self.assertGreater(out[0].score, 0.99)
        self.assertEqual(out[0].label, "cat")

    def test_cross_class_overlap_kept(self) -> None:
        out = _decode(self._overlapping_pair(second_class=2), conf=0.5, nms=0.5)
        self.assertEqual([d.label for d in out], ["cat", "bird"])

    def test_capacity_truncates_in_survival_order(self) -> None:
        heads = _blank_heads()
        for c in range(8):
            heads[0][0, c, 0, 4] = 10.0
            heads[0][0, c, 0, 5] = 10.0 - c * 0.5
        out = _decode(heads, max_detections=3)
        self.assertEqual(len(out), 3)
        self.assertEqual(out.dropped, 5)
        centres = [(d.x1 + d.x2) / 2 for d in out]
        self.assertEqual(len(set(centres)), 3)
        self.assertEqual(sorted((d.score for d in out), reverse=True), [d.score for d in out])

    def test_quant_params_alternative(self) -> None:
        heads = _blank_heads()
        heads[1][1, 1, 0, 4] = 10.0
        heads[1][1, 1, 0, 5 + 2] = 10.0
        out = decode_detections(
            *_q(heads), INPUT, INPUT, 0.5, 0.5, 1.0, 1.0,
            quant_params=[PARAMS] * 3, class_names=CLASSES,
        )
        self.assertEqual([d.label for d in out], ["bird"])

    def test_calibration_arguments_validated(self) -> None:
        heads = _q(_blank_heads())
        with self.assertRaises(ConfigurationError):
            decode_detections(*heads, INPUT, INPUT, 0.5, 0.5, 1.0, 1.0, class_names=CLASSES)
        with self.assertRaises(ConfigurationError):
            decode_detections(
                *heads, INPUT, INPUT, 0.5, 0.5, 1.0, 1.0,
                zero_points=[0, 0], scales=[0.1, 0.1, 0.1], class_names=CLASSES,
            )

    def test_misshapen_tensor_fails_whole_call(self) -> None:
        heads = _q(_blank_heads())
        heads[1] = heads[1][:, :2]
        with self.assertRaises(ConfigurationError):
            decode_detections(
                *heads, INPUT, INPUT, 0.5, 0.5, 1.0, 1.0,
                zero_points=[0, 0, 0], scales=[0.1] * 3, class_names=CLASSES,
            )


class TestQuantYoloPostprocessor(unittest.TestCase):
    def test_process_with_config(self) -> None:
        heads = _blank_heads()
        heads[0][4, 4, 0, 4] = 10.0
        heads[0][4, 4, 0, 5] = 10.0
        post = QuantYoloPostprocessor(
            QuantYoloPostConfig(num_classes=3, workers=3), class_names={0: "cat"}
        )
        out = post.process(_q(heads), [PARAMS] * 3, input_size=(INPUT, INPUT), ratio=(1.0, 1.0))
        self.assertEqual([d.label for d in out], ["cat"])

    def test_unknown_class_renders_as_index(self) -> None:
        heads = _blank_heads()
        heads[0][4, 4, 0, 4] = 10.0
        heads[0][4, 4, 0, 5 + 2] = 10.0
        post = QuantYoloPostprocessor(QuantYoloPostConfig(num_classes=3), class_names=("cat",))
        out = post.process(_q(heads), [PARAMS] * 3, input_size=(INPUT, INPUT))
        self.assertEqual(out[0].label, "2")

    def test_wrong_tensor_count(self) -> None:
        post = QuantYoloPostprocessor(QuantYoloPostConfig(num_classes=3))
        with self.assertRaises(ConfigurationError):
            post.process(_q(_blank_heads())[:2], [PARAMS] * 2, input_size=(INPUT, INPUT))


if __name__ == "__main__":
    unittest.main()
