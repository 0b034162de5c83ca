"""imgbake: build reusable IBM Cloud (SoftLayer) images from a provisioned VM."""
