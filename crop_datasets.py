import argparse
import logging
import os

from PIL import Image

logger = logging.getLogger("crop_datasets")

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png")
# Benchmark resolutions, smallest first
SIZES = [(128, 128), (256, 256), (320, 320), (512, 512), (640, 640), (1024, 1024)]


def size_folder_name(size):
    return f"{size[0]}x{size[1]}"


def crop_center(img, size):
    """Center-crop `img` to `size`, resizing with LANCZOS when the image is smaller."""
    width, height = img.size
    crop_width, crop_height = size
    if crop_width > width or crop_height > height:
        return img.resize(size, Image.Resampling.LANCZOS)

    left = (width - crop_width) // 2
    top = (height - crop_height) // 2
    return img.crop((left, top, left + crop_width, top + crop_height))


def crop_and_save_images(input_folder, output_folder, sizes=SIZES):
    """
    Write every image of `input_folder` at each of `sizes` into
    `<output_folder>/<W>x<H>/<filename>`. Returns the written paths.
    """
    os.makedirs(output_folder, exist_ok=True)

    saved = []
    for filename in sorted(os.listdir(input_folder)):
        if not filename.lower().endswith(IMAGE_EXTENSIONS):
            continue
        with Image.open(os.path.join(input_folder, filename)) as img:
            for size in sizes:
                size_folder = os.path.join(output_folder, size_folder_name(size))
                os.makedirs(size_folder, exist_ok=True)

                output_path = os.path.join(size_folder, filename)
                crop_center(img, size).save(output_path)
                saved.append(output_path)
                logger.info(f"Saved: {output_path}")
    return saved


def main(argv=None):
    parser = argparse.ArgumentParser(description="Build the resolution folders used by the benchmark.")
    parser.add_argument("--input", default="./images/", help="folder of source images")
    parser.add_argument("--output", default="./cropped_datasets", help="folder for the cropped copies")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
    crop_and_save_images(args.input, args.output, SIZES)
    return 0


if __name__ == "__main__":
    main()
